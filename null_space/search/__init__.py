"""Full-text search over vault notes."""

from .index import SearchIndex, build_match_expression, query_terms

__all__ = ["SearchIndex", "build_match_expression", "query_terms"]
