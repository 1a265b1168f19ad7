"""
Shared FastAPI dependencies
"""

from fastapi import Header, HTTPException, Request

from context import EngineContext


def get_engine(request: Request) -> EngineContext:
    """Engine context attached to the application during startup."""
    engine = getattr(request.app.state, "engine", None)
    if engine is None:
        raise HTTPException(status_code=503, detail="Catalog engine not initialized")
    return engine


def get_user_id(x_user_id: str = Header(..., alias="X-User-Id")) -> str:
    user_id = x_user_id.strip()
    if not user_id:
        raise HTTPException(status_code=401, detail="Missing user id")
    return user_id
