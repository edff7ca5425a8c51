from codelens_store.base import BaseStore
from codelens_store.errors import InvalidTransitionError, ReviewNotFoundError, StoreError
from codelens_store.memory import MemoryStore
from codelens_store.models import ReviewRecord, ReviewStatus

__all__ = [
    "BaseStore",
    "InvalidTransitionError",
    "MemoryStore",
    "ReviewNotFoundError",
    "ReviewRecord",
    "ReviewStatus",
    "StoreError",
]
