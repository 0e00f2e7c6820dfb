from .ai_port import Embedder, Generator
from .cache_port import KeyValueCache
from .event_log_port import EventLogPort
from .vector_index_port import VectorHit, VectorIndex

__all__ = [
    "Embedder",
    "Generator",
    "KeyValueCache",
    "EventLogPort",
    "VectorHit",
    "VectorIndex",
]
