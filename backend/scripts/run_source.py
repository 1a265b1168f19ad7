#!/usr/bin/env python3
"""
Run one catalog source to completion from the command line
Usage: python -m scripts.run_source bershka all [--resume] [--chunk-size 50]
"""

import argparse
import asyncio
import json
import sys
from typing import List, Optional

from context import create_engine_context
from pipeline.orchestrator import RunMode
from utils.errors import CatalogEngineError
from utils.logging import get_logger, setup_logging

logger = get_logger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Run the catalog pipeline for one source")
    parser.add_argument("source_id", help="Registered source id, e.g. bershka")
    parser.add_argument("mode", choices=[mode.value for mode in RunMode],
                        help="'all' discovers categories first, 'details' reuses stored identities")
    parser.add_argument("--resume", action="store_true",
                        help="Only process identities not yet marked processed (details mode)")
    parser.add_argument("--chunk-size", type=int, default=None,
                        help="Override the detail request chunk size")
    return parser


async def run(args: argparse.Namespace) -> int:
    engine = await create_engine_context()
    overrides = {"chunk_size": args.chunk_size} if args.chunk_size else None
    try:
        summary = await engine.orchestrator.run(
            args.source_id, mode=RunMode(args.mode), resume=args.resume, overrides=overrides
        )
    except CatalogEngineError as e:
        logger.error("Run rejected", source=args.source_id, error=str(e))
        return 2
    finally:
        await engine.close()

    print(json.dumps(summary.to_dict(), indent=2, default=str))
    return 0 if summary.error is None else 1


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    setup_logging()
    return asyncio.run(run(args))


if __name__ == "__main__":
    sys.exit(main())
