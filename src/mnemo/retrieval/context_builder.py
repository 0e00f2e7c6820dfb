from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from mnemo.domain.memory import MemoryRecord, MemoryType

from .policy import RetrievalPolicy, memory_time

RECENT_DAYS = 7
PROFILE_HEADER = "User Profile Snapshot:\n"
FALLBACK_LABEL = "Relevant Memories"


@dataclass
class ContextBlock:
    label: str
    items: List[MemoryRecord] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "label": self.label,
            "items": [
                {
                    "id": m.id,
                    "title": m.title,
                    "summary": m.summary,
                    "url": m.url,
                    "importance_score": m.importance_score,
                    "created_at": m.created_at.isoformat() if m.created_at else None,
                }
                for m in self.items
            ],
        }


def _is_recent(memory: MemoryRecord, now: datetime) -> bool:
    if memory.memory_type == MemoryType.LOG_EVENT:
        return True
    created = memory.created_at
    if created is None:
        return False
    if created.tzinfo is None:
        created = created.replace(tzinfo=timezone.utc)
    return (now - created).total_seconds() / 86400 <= RECENT_DAYS


def _block_rules(now: datetime) -> List[Tuple[str, Callable[[MemoryRecord], bool], int]]:
    return [
        ("Key Facts & Preferences", lambda m: m.memory_type in (MemoryType.FACT, MemoryType.PREFERENCE), 3),
        ("Projects & Plans", lambda m: m.memory_type == MemoryType.PROJECT, 3),
        ("Recent Activity", lambda m: _is_recent(m, now), 4),
    ]


def _render_item(index: int, memory: MemoryRecord) -> str:
    moment = memory.created_at or memory_time(memory)
    date_text = f" ({moment.date().isoformat()})" if moment else ""
    title = memory.title or "Untitled"
    return f"{index}. {title}{date_text} - {memory.summary or ''}"


def build_context(
    memories: Sequence[MemoryRecord],
    policy: RetrievalPolicy,
    profile_text: Optional[str] = None,
    now: Optional[datetime] = None,
) -> Tuple[str, List[ContextBlock]]:
    """Group memories into labelled blocks and render them within the policy's budget."""
    now = now or datetime.now(timezone.utc)
    ordered = sorted(memories, key=lambda m: m.importance_score or 0.0, reverse=True)

    blocks: List[ContextBlock] = []
    for label, predicate, limit in _block_rules(now):
        picked = [m for m in ordered if predicate(m)][:limit]
        if picked:
            blocks.append(ContextBlock(label=label, items=picked))
    if not blocks and ordered:
        blocks.append(ContextBlock(label=FALLBACK_LABEL, items=ordered[: policy.max_results]))

    parts: List[str] = []
    if profile_text:
        parts.append(PROFILE_HEADER + profile_text)
    for block in blocks:
        lines = "\n".join(_render_item(i, m) for i, m in enumerate(block.items, start=1))
        parts.append(f"{block.label}:\n{lines}")

    text = "\n\n".join(parts)
    if policy.context_budget and len(text) > policy.context_budget:
        text = text[: policy.context_budget] + "…"
    return text, blocks
