"""
Answer synthesis over the ranked evidence, with numeric citations.
"""

from __future__ import annotations

import logging
import re
from dataclasses import asdict, dataclass
from typing import List, Optional, Sequence, Tuple

from mnemo.application.ports.ai_port import Generator
from mnemo.core.errors import MalformedOutputError
from mnemo.domain.memory import MemoryRecord

from .policy import memory_time

logger = logging.getLogger(__name__)

_CITATION = re.compile(r"\[([\d,\s]+)\]")

_ANSWER_SYSTEM = "You answer questions from a personal memory store using only the evidence provided."

_ANSWER_PROMPT = """Answer the user's query using the evidence notes, and insert bracketed numeric citations wherever you use a note.

Rules:
- Use inline numeric citations like [1], [2].
- Keep it concise (2-4 sentences).
- Plain text only.
- Consider the user's profile context when answering to provide more relevant and personalized responses.

Return ONLY plain text: no markdown, no bullet points, no links. Square brackets are allowed only for numeric citations.

User query: "{query}"{profile}
Evidence notes (ordered by relevance):
{evidence}"""


@dataclass
class Citation:
    label: int
    memory_id: str
    title: Optional[str] = None
    url: Optional[str] = None

    def to_dict(self) -> dict:
        return asdict(self)


def evidence_lines(memories: Sequence[MemoryRecord]) -> str:
    lines = []
    for i, memory in enumerate(memories, start=1):
        moment = memory_time(memory)
        date = moment.date().isoformat() if moment else ""
        lines.append(f"- [{i}] {date} {memory.summary or ''}".strip())
    return "\n".join(lines)


def build_answer_prompt(query: str, memories: Sequence[MemoryRecord], profile_text: Optional[str] = None) -> str:
    profile = f"\n\nUser Profile Context:\n{profile_text}\n" if profile_text else ""
    return _ANSWER_PROMPT.format(query=query, profile=profile, evidence=evidence_lines(memories))


def extract_citation_order(text: Optional[str]) -> List[int]:
    """All cited labels in reading order, each once."""
    if not text:
        return []
    order: List[int] = []
    for match in _CITATION.finditer(text):
        for part in match.group(1).split(","):
            part = part.strip()
            if not part.isdigit():
                continue
            label = int(part)
            if label not in order:
                order.append(label)
    return order


def map_citations(text: Optional[str], memories: Sequence[MemoryRecord]) -> List[Citation]:
    citations = []
    for label in extract_citation_order(text):
        if 1 <= label <= len(memories):
            memory = memories[label - 1]
            citations.append(Citation(label=label, memory_id=memory.id, title=memory.title, url=memory.url))
    return citations


def _defuse_citations(text: str) -> str:
    """Rewrite bracketed numbers as parentheses so they cannot be read back as citations."""
    return _CITATION.sub(lambda m: f"({m.group(1)})", text)


def fallback_answer(query: str, memories: Sequence[MemoryRecord]) -> str:
    listed = ", ".join(
        f"[{i}] {_defuse_citations(m.title or 'Untitled')}" for i, m in enumerate(memories[:3], start=1)
    )
    tail = " and more." if len(memories) > 3 else "."
    return f'Found {len(memories)} relevant memories about "{_defuse_citations(query)}". {listed}{tail}'


class AnswerSynthesizer:
    def __init__(self, generator: Optional[Generator], *, timeout: float = 300.0):
        self.generator = generator
        self.timeout = timeout

    async def synthesize(
        self,
        query: str,
        memories: Sequence[MemoryRecord],
        profile_text: Optional[str] = None,
    ) -> Tuple[Optional[str], List[Citation]]:
        if not memories:
            return None, []
        try:
            if self.generator is None:
                raise MalformedOutputError("no generator configured")
            answer = (
                await self.generator.generate(
                    build_answer_prompt(query, memories, profile_text),
                    system=_ANSWER_SYSTEM,
                    timeout=self.timeout,
                )
                or ""
            ).strip()
            if not answer:
                raise MalformedOutputError("empty answer")
        except Exception as exc:
            logger.error(f"answer generation failed, using fallback: {exc}")
            answer = fallback_answer(query, memories)
        return answer, map_citations(answer, memories)
