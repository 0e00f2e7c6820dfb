"""
Canonical text used for duplicate detection.

Volatile tokens (timestamps, UUIDs, HTML scaffolding, tracking parameters) are
removed so that two captures of the same page normalize to the same string.
"""

from __future__ import annotations

import hashlib
import re
import unicodedata
from typing import Optional
from urllib.parse import urlsplit

from mnemo.domain.memory import CanonicalContent

DEFAULT_MAX_LENGTH = 100_000

_TRACKING_PATTERNS = [
    re.compile(r"\b(?:ga|gtag|gtm|analytics|_ga|_gid|_gat)[-_]?[a-z0-9_]*[:=]\s*['\"]?[a-zA-Z0-9_-]+['\"]?", re.I),
    re.compile(r"\b(?:fb|facebook)[-_]?(?:pixel|track|event)[-_]?[a-z0-9_]*[:=]\s*['\"]?[a-zA-Z0-9_-]+['\"]?", re.I),
    re.compile(r"\b(?:tracking|track)[-_]?(?:id|code|token|key)[:=]\s*['\"]?[a-zA-Z0-9_-]{10,}['\"]?", re.I),
    re.compile(r"\b(?:session|sess)[-_]?(?:id|token)[:=]\s*['\"]?[a-zA-Z0-9_-]{20,}['\"]?", re.I),
    re.compile(r"\b(?:utm_[a-z]+|ref|source|campaign|medium|term|content|gclid|fbclid|_hsenc|_hsmi)=[^&\s]*", re.I),
    re.compile(r"\b(?:marketing|promo|affiliate)[-_]?(?:id|code|tag)[:=]\s*['\"]?[a-zA-Z0-9_-]+['\"]?", re.I),
]

_MARKUP_PATTERNS = [
    (re.compile(r"<!--[\s\S]*?-->"), ""),
    (re.compile(r"<script[\s\S]*?</script>", re.I), ""),
    (re.compile(r"<style[\s\S]*?</style>", re.I), ""),
    (re.compile(r"<noscript[\s\S]*?</noscript>", re.I), ""),
    (re.compile(r"data-[\w-]+=\"[^\"]*\""), ""),
    (re.compile(r"id=\"[^\"]*\""), ""),
    (re.compile(r"class=\"[^\"]*\""), ""),
    (re.compile(r"style=\"[^\"]*\""), ""),
    (re.compile(r"<[^>]+>"), " "),
]

_VOLATILE_PATTERNS = [
    (re.compile(r"\d{4}-\d{2}-\d{2}[T\s]\d{2}:\d{2}:\d{2}z?", re.I), ""),  # ISO timestamps
    (re.compile(r"\d{1,2}/\d{1,2}/\d{2,4}"), ""),  # dates
    (re.compile(r"\d{1,2}:\d{2}(?::\d{2})?\s*(?:am|pm)?", re.I), ""),  # times
    (re.compile(r"\d{13,}"), ""),  # epoch millis
    (re.compile(r"[a-f0-9]{8}-[a-f0-9]{4}-[a-f0-9]{4}-[a-f0-9]{4}-[a-f0-9]{12}", re.I), ""),
]

_WS = re.compile(r"\s+")


def _strip_pass(text: str) -> str:
    for pattern, repl in _MARKUP_PATTERNS:
        text = pattern.sub(repl, text)
    for pattern, repl in _VOLATILE_PATTERNS:
        text = pattern.sub(repl, text)
    for pattern in _TRACKING_PATTERNS:
        text = pattern.sub("", text)
    return _WS.sub(" ", text).strip()


def canonicalize_text(text: Optional[str], max_length: int = DEFAULT_MAX_LENGTH) -> str:
    """NFKC + lowercase, strip volatile tokens, collapse whitespace, truncate."""
    if not isinstance(text, str):
        return ""
    normalized = unicodedata.normalize("NFKC", text).strip().lower()
    # removing one token can join its neighbours into another
    while True:
        stripped = _strip_pass(normalized)
        if stripped == normalized:
            break
        normalized = stripped
    if max_length and len(normalized) > max_length:
        normalized = normalized[:max_length].rstrip()
    return normalized


def hash_canonical(canonical_text: str) -> str:
    return hashlib.sha256(canonical_text.encode("utf-8")).hexdigest()


def normalize_url(url: Optional[str]) -> Optional[str]:
    """scheme://host/path, lower-cased; query string and fragment dropped."""
    if not isinstance(url, str) or not url.strip() or url.strip().lower() == "unknown":
        return None
    raw = url.strip()
    try:
        parts = urlsplit(raw)
        if parts.scheme and parts.hostname:
            return f"{parts.scheme}://{parts.hostname}{parts.path}".lower()
    except ValueError:
        pass
    return raw.lower().split("?")[0].split("#")[0]


def text_similarity(text1: Optional[str], text2: Optional[str]) -> float:
    """Jaccard similarity over whitespace tokens."""
    if not text1 or not text2:
        return 0.0
    if text1 == text2:
        return 1.0
    words1 = set(text1.split())
    words2 = set(text2.split())
    if not words1 and not words2:
        return 1.0
    if not words1 or not words2:
        return 0.0
    return len(words1 & words2) / len(words1 | words2)


def canonicalize(
    text: Optional[str],
    url: Optional[str] = None,
    max_length: int = DEFAULT_MAX_LENGTH,
) -> CanonicalContent:
    canonical_text = canonicalize_text(text, max_length=max_length)
    return CanonicalContent(
        canonical_text=canonical_text,
        canonical_hash=hash_canonical(canonical_text),
        normalized_url=normalize_url(url),
    )


def build_content_preview(text: Optional[str], length: int = 400) -> str:
    if not text:
        return ""
    return _WS.sub(" ", text).strip()[:length]


_INVISIBLE = re.compile("[\u200b-\u200d\ufeff]")
_CONTROL = re.compile("[\u0000-\u0008\u000b\u000c\u000e-\u001f\u007f-\u009f]")
_BLOCKS = re.compile(
    r"<!--[\s\S]*?-->|<script[\s\S]*?</script>|<style[\s\S]*?</style>|<noscript[\s\S]*?</noscript>"
    r"|<iframe[\s\S]*?</iframe>|<object[\s\S]*?</object>|<embed[\s\S]*?>",
    re.I,
)
_PIXEL_IMG = re.compile(r"<img[^>]*src=[\"'][^\"']*(?:pixel|tracking|analytics)[^\"']*[\"'][^>]*>", re.I)
_ENTITIES = [
    ("&nbsp;", " "),
    ("&amp;", "&"),
    ("&lt;", "<"),
    ("&gt;", ">"),
    ("&quot;", '"'),
    ("&#39;", "'"),
]


def sanitize_content_for_storage(content: Optional[str]) -> str:
    """Readable cleanup of captured text before it is stored (case preserved)."""
    if not isinstance(content, str) or not content.strip():
        return ""
    sanitized = _INVISIBLE.sub("", content)
    sanitized = _CONTROL.sub("", sanitized)
    sanitized = _BLOCKS.sub("", sanitized)
    for pattern in _TRACKING_PATTERNS:
        sanitized = pattern.sub("", sanitized)
    sanitized = _PIXEL_IMG.sub("", sanitized)
    sanitized = re.sub(r"<[^>]+>", " ", sanitized)
    for entity, repl in _ENTITIES:
        sanitized = sanitized.replace(entity, repl)
    sanitized = re.sub(r"&[a-z]+;", " ", sanitized, flags=re.I)
    sanitized = re.sub("[\u201c\u201d]", '"', sanitized)
    sanitized = re.sub("[\u2018\u2019]", "'", sanitized)
    sanitized = re.sub(r"\.{4,}", "...", sanitized)
    sanitized = re.sub(r"!{2,}", "!", sanitized)
    sanitized = re.sub(r"\?{2,}", "?", sanitized)
    sanitized = re.sub(r"\s+([.,!?;:])", r"\1", sanitized)
    return _WS.sub(" ", sanitized).strip()
