"""Caller quota storage — Protocol interface and implementations."""

from streetscene.store.quota_store import (
    InMemoryQuotaStore,
    QuotaStore,
    SqliteQuotaStore,
    create_quota_store,
)

__all__ = [
    "InMemoryQuotaStore",
    "QuotaStore",
    "SqliteQuotaStore",
    "create_quota_store",
]
