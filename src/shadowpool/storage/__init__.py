"""Storage layer for persistent pool state."""

from shadowpool.storage.database import (
    DatabaseManager,
    PoolRecord,
    CommitmentRecord,
    NullifierRecord,
    RootHistoryRecord,
    StuckPayoutRecord,
    EventRecord,
    Base,
    get_db_manager,
    reset_db_manager,
)

__all__ = [
    "DatabaseManager",
    "PoolRecord",
    "CommitmentRecord",
    "NullifierRecord",
    "RootHistoryRecord",
    "StuckPayoutRecord",
    "EventRecord",
    "Base",
    "get_db_manager",
    "reset_db_manager",
]
