from .index import InMemoryVectorIndex

__all__ = ["InMemoryVectorIndex"]
