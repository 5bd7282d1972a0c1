"""
Method catalog and resolution of steps to reusable methods
"""

from .method_catalog import MatchPattern, MethodCatalog, MethodCatalogEntry
from .method_resolver import MethodResolver, NeedsNewMethod, ResolutionReport

__all__ = [
    "MatchPattern",
    "MethodCatalog",
    "MethodCatalogEntry",
    "MethodResolver",
    "NeedsNewMethod",
    "ResolutionReport",
]
