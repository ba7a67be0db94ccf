"""Search index sink."""

from .typesense_index import IndexResult, SearchError, TypesenseIndex

__all__ = ["IndexResult", "SearchError", "TypesenseIndex"]
