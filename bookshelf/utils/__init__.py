"""Utility modules: cache store, event bus and name normalization."""

from .normalization import normalize_genre_name, normalize_series_name, normalize_text

__all__ = ['normalize_genre_name', 'normalize_series_name', 'normalize_text']
