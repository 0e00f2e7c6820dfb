"""
Memory module: canonicalization, scoring, extraction, mesh and profile.
"""

from .canonical import (
    build_content_preview,
    canonicalize,
    canonicalize_text,
    hash_canonical,
    normalize_url,
    sanitize_content_for_storage,
    text_similarity,
)

__all__ = [
    "build_content_preview",
    "canonicalize",
    "canonicalize_text",
    "hash_canonical",
    "normalize_url",
    "sanitize_content_for_storage",
    "text_similarity",
]
