"""
Product resolution package
"""

from .resolver import ProductResolver, ResolvedProduct

__all__ = ["ProductResolver", "ResolvedProduct"]
