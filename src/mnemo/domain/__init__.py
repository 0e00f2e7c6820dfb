from .memory import (
    CanonicalContent,
    CaptureMetadata,
    ExtractedMetadata,
    MemoryRecord,
    MemoryType,
)

__all__ = [
    "CanonicalContent",
    "CaptureMetadata",
    "ExtractedMetadata",
    "MemoryRecord",
    "MemoryType",
]
