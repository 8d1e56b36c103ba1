from .publisher import InMemoryPublisher

__all__ = ["InMemoryPublisher"]
