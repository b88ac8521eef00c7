"""
Wager Ledger

This module provides:
- Append-only ledger entries with a cached wallet balance projection
- Wager intake against open markets and option games
- One-time result settlement with per-game-type matching rules
- Deposit / withdrawal approval and manual balance adjustments
- Audit-friendly structure: every balance change has exactly one entry
"""

from .models import (
    Role,
    UserStatus,
    EntityStatus,
    ResultStatus,
    TransactionKind,
    TransactionStatus,
    WagerStatus,
    TargetKind,
    Decision,
    User,
    LedgerEntry,
    Market,
    GameTypeConfig,
    OptionGame,
    Wager,
    UserBalance,
    SettlementReport,
)
from .errors import (
    LedgerServiceError,
    ValidationError,
    NotFoundError,
    NotOpenError,
    InsufficientBalanceError,
    UnauthorizedActionError,
    InvalidStateTransitionError,
    AlreadyDeclaredError,
    FatalLedgerInconsistencyError,
)
from .storage import StoragePort, InMemoryStorage
from .accounts import AccountService
from .service import LedgerService
from .markets import MarketService
from .approvals import ApprovalService
from .intake import WagerIntake
from .settlement import SettlementEngine

__all__ = [
    "Role",
    "UserStatus",
    "EntityStatus",
    "ResultStatus",
    "TransactionKind",
    "TransactionStatus",
    "WagerStatus",
    "TargetKind",
    "Decision",
    "User",
    "LedgerEntry",
    "Market",
    "GameTypeConfig",
    "OptionGame",
    "Wager",
    "UserBalance",
    "SettlementReport",
    "LedgerServiceError",
    "ValidationError",
    "NotFoundError",
    "NotOpenError",
    "InsufficientBalanceError",
    "UnauthorizedActionError",
    "InvalidStateTransitionError",
    "AlreadyDeclaredError",
    "FatalLedgerInconsistencyError",
    "StoragePort",
    "InMemoryStorage",
    "AccountService",
    "LedgerService",
    "MarketService",
    "ApprovalService",
    "WagerIntake",
    "SettlementEngine",
]
