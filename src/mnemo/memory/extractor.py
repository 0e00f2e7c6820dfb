"""
Summary and metadata extraction for captured content.

Both calls go through the injected Generator. Metadata extraction never
raises: unparseable output falls back to a keyword heuristic and generator
failures yield empty metadata.
"""

from __future__ import annotations

import logging
import re
from collections import Counter
from typing import List, Optional

from mnemo.application.ports.ai_port import Generator
from mnemo.core.errors import MalformedOutputError
from mnemo.core.json_utils import extract_json_object
from mnemo.domain.memory import CaptureMetadata, ExtractedMetadata

logger = logging.getLogger(__name__)

_SUMMARY_SYSTEM = (
    "You write concise summaries for a personal memory store. "
    "Return clean plain text only: no markdown, no bullet points, no links."
)

_METADATA_SYSTEM = "You extract structured metadata. Respond with ONLY a valid JSON object."

_SENTIMENTS = {"educational", "technical", "neutral", "analytical", "positive", "negative"}

_STOP = {
    "the", "and", "for", "that", "this", "with", "from", "have", "are", "was", "were",
    "will", "your", "you", "they", "their", "there", "what", "when", "where", "which",
    "about", "into", "than", "then", "them", "been", "also", "just", "more", "some",
    "such", "only", "over", "most", "other", "these", "those", "would", "could", "should",
}

_MARKDOWN = re.compile(r"(\*\*|__|`{1,3}|^#+\s*|^\s*[-*]\s+)", re.M)
_WORD = re.compile(r"[a-z][a-z0-9_-]{3,}")
_SENTENCE = re.compile(r"(?<=[.!?])\s+")


def build_summary_prompt(text: str, capture: Optional[CaptureMetadata] = None) -> str:
    capture = capture or CaptureMetadata()
    content_type = capture.content_type or "web_page"
    existing = capture.extra.get("content_summary", "")
    return (
        f"Summarize the following {content_type} for storage in a personal memory graph. "
        "Be concise (<=200 words), capture key ideas, why it matters, and any actionable takeaways.\n\n"
        f"Title: {capture.title or ''}\n"
        f"URL: {capture.url or ''}\n"
        f"Existing Summary: {existing}\n\n"
        f"Text:\n{text}"
    )


def build_metadata_prompt(text: str, capture: Optional[CaptureMetadata] = None) -> str:
    capture = capture or CaptureMetadata()
    content_type = capture.content_type or "web_page"
    return (
        "Extract metadata from this content.\n\n"
        f"Title: {capture.title or ''}\n"
        f"Content: {text[:2000]}\n\n"
        "Required JSON format:\n"
        '{"topics": ["keyword1", "keyword2"], "categories": ["' + content_type + '"], '
        '"key_points": ["point1", "point2"], "sentiment": "neutral", "importance": 5, '
        '"usefulness": 5, "searchable_terms": ["term1", "term2"], "memory_type": "REFERENCE"}\n\n'
        "Rules:\n"
        "- sentiment: educational, technical, neutral, analytical, positive, negative\n"
        "- importance/usefulness: numbers 1-10\n"
        "- topics: 2-4 relevant keywords from content\n"
        "- key_points: 2-3 main points (max 80 chars each)\n"
        "- searchable_terms: 5-8 important words\n"
        "- memory_type: one of FACT, PREFERENCE, LOG_EVENT, REFERENCE, PROJECT\n\n"
        "JSON ONLY:"
    )


def clean_summary(text: str) -> str:
    return re.sub(r"\s+", " ", _MARKDOWN.sub("", text or "")).strip()


def _scale_10(value) -> Optional[float]:
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    # prompt asks for 1-10
    if number > 1:
        number = number / 10
    return max(0.0, min(1.0, number))


def heuristic_metadata(text: str, capture: Optional[CaptureMetadata] = None) -> ExtractedMetadata:
    capture = capture or CaptureMetadata()
    haystack = f"{capture.title or ''} {text or ''}".lower()
    counts = Counter(w for w in _WORD.findall(haystack) if w not in _STOP)
    common = [w for w, _ in counts.most_common(8)]
    sentences = [s.strip() for s in _SENTENCE.split((text or "").strip()) if s.strip()]
    return ExtractedMetadata(
        topics=common[:4],
        categories=[capture.content_type or "web_page"],
        key_points=[s[:80] for s in sentences[:2]],
        searchable_terms=common,
        sentiment="neutral",
        importance=0.5,
        usefulness=0.5,
        content_type=capture.content_type,
    )


class ContentExtractor:
    def __init__(
        self,
        generator: Generator,
        *,
        summary_timeout: float = 120.0,
        metadata_timeout: float = 60.0,
    ):
        self.generator = generator
        self.summary_timeout = summary_timeout
        self.metadata_timeout = metadata_timeout

    async def summarize(self, text: str, capture: Optional[CaptureMetadata] = None) -> str:
        raw = await self.generator.generate(
            build_summary_prompt(text, capture),
            system=_SUMMARY_SYSTEM,
            timeout=self.summary_timeout,
        )
        summary = clean_summary(raw)
        if not summary:
            raise MalformedOutputError("empty summary")
        return summary

    async def extract_metadata(self, text: str, capture: Optional[CaptureMetadata] = None) -> ExtractedMetadata:
        try:
            raw = await self.generator.generate(
                build_metadata_prompt(text, capture),
                system=_METADATA_SYSTEM,
                timeout=self.metadata_timeout,
            )
        except Exception as exc:
            logger.warning(f"metadata extraction failed, continuing without metadata: {exc}")
            return ExtractedMetadata()

        try:
            data = extract_json_object(raw)
        except MalformedOutputError as exc:
            logger.warning(f"metadata output malformed, using heuristic: {exc}")
            return heuristic_metadata(text, capture)

        sentiment = str(data.get("sentiment") or "neutral").lower()
        parsed = ExtractedMetadata.from_dict(
            {k: v for k, v in data.items() if k not in ("importance", "usefulness", "sentiment")}
        )
        parsed.sentiment = sentiment if sentiment in _SENTIMENTS else "neutral"
        parsed.importance = _scale_10(data.get("importance"))
        parsed.usefulness = _scale_10(data.get("usefulness"))
        if not parsed.categories and capture and capture.content_type:
            parsed.categories = [capture.content_type]
        return parsed


def merge_capture_metadata(extracted: ExtractedMetadata, capture: CaptureMetadata) -> ExtractedMetadata:
    """Fold client-supplied tags / content type into the extracted metadata."""
    if capture.content_type and not extracted.content_type:
        extracted.content_type = capture.content_type
    if capture.tags:
        merged: List[str] = list(extracted.topics)
        for tag in capture.tags:
            if tag not in merged:
                merged.append(tag)
        extracted.topics = merged
    if capture.source:
        extracted.extra.setdefault("source", capture.source)
    return extracted
