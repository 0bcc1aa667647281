"""Name folding helpers used for duplicate detection and search."""

import re
import unicodedata
from typing import Optional

_WHITESPACE = re.compile(r'\s+')


def normalize_genre_name(name: Optional[str]) -> str:
    """Lowercase, trim and collapse internal whitespace."""
    return _WHITESPACE.sub(' ', (name or '').lower().strip())


def normalize_series_name(name: Optional[str]) -> str:
    """Like genre names, but curly apostrophes are folded to a plain quote."""
    if not name:
        return ''
    folded = name.lower().replace('‘', "'").replace('’', "'")
    return _WHITESPACE.sub(' ', folded).strip()


def normalize_text(text: Optional[str]) -> str:
    """Fold case, quote variants and accents for client-side search.

    'Les Misérables' and 'les miserables' compare equal.
    """
    lowered = (text or '').lower()
    for quote in ('‘', '’', '`'):
        lowered = lowered.replace(quote, "'")
    decomposed = unicodedata.normalize('NFD', lowered)
    return ''.join(ch for ch in decomposed if not unicodedata.combining(ch))
