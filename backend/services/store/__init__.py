from .repository import MosqueRepository, SqlMosqueRepository

__all__ = ["MosqueRepository", "SqlMosqueRepository"]
