from .memory_store import SqlAlchemyMemoryStore
from .sqlalchemy_db import SessionProvider, get_db_url

__all__ = ["SqlAlchemyMemoryStore", "SessionProvider", "get_db_url"]
