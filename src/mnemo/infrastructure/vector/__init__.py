from .memory_index import InMemoryVectorIndex
from .qdrant_index import QdrantVectorIndex

__all__ = ["InMemoryVectorIndex", "QdrantVectorIndex"]
