"""Remote collaborator contracts and their concrete implementations."""
from .base import (
    BlobStorage,
    ChangeFeed,
    ChangeHandler,
    DuplicateKeyError,
    Filter,
    Order,
    RemoteStore,
    RemoteStoreError,
    RemoteTimeoutError,
    SubscriptionHandle,
    eq,
    with_timeout,
)
from .postgrest import PostgrestRemoteStore
from .sql_store import SqlRemoteStore

__all__ = [
    "BlobStorage",
    "ChangeFeed",
    "ChangeHandler",
    "DuplicateKeyError",
    "Filter",
    "Order",
    "PostgrestRemoteStore",
    "RemoteStore",
    "RemoteStoreError",
    "RemoteTimeoutError",
    "SqlRemoteStore",
    "SubscriptionHandle",
    "eq",
    "with_timeout",
]
