"""Engine components orchestrating fetch → detect → remediate."""

from .auth import AuthCredentials, Credential, TokenManager, build_token_url
from .dedup import DuplicateAggregator, DuplicateGroup, find_duplicate_groups
from .reader import InventoryRecord, PageResult, PaginatedReader
from .report import DuplicateReport, unique_path
from .thread_pool import DeleteRecord, FetchPage, Outcome, WorkerPool
from .transport import Transport

__all__ = [
    "AuthCredentials",
    "Credential",
    "DeleteRecord",
    "DuplicateAggregator",
    "DuplicateGroup",
    "DuplicateReport",
    "FetchPage",
    "InventoryRecord",
    "Outcome",
    "PageResult",
    "PaginatedReader",
    "TokenManager",
    "Transport",
    "WorkerPool",
    "build_token_url",
    "find_duplicate_groups",
    "unique_path",
]
