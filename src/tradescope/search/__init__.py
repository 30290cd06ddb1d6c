"""Shipment search: query normalization, index execution, facets and exports."""

from .models import SearchQuery, SearchResult, Shipment
from .normalizer import normalize_query

__all__ = ["SearchQuery", "SearchResult", "Shipment", "normalize_query"]
