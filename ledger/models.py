from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from enum import Enum
from typing import Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, Field, ConfigDict

from rules import GameType

from .errors import ValidationError


CENT = Decimal("0.01")
MAX_AMOUNT = Decimal("999999999999.99")


def to_money(value) -> Decimal:
    """Round a computed value (balance, amount x odds) to cents."""
    try:
        return Decimal(str(value)).quantize(CENT, rounding=ROUND_HALF_UP)
    except InvalidOperation:
        raise ValidationError(f"Amount {value!r} is out of range")


def parse_amount(value) -> Decimal:
    """Validate a caller-supplied amount; it is never rounded."""
    try:
        amount = Decimal(str(value))
        quantized = amount.quantize(CENT)
    except InvalidOperation:
        raise ValidationError(f"Amount {value!r} is not a valid amount")
    if quantized != amount:
        raise ValidationError(f"Amount {value} has more than two decimal places")
    if abs(quantized) > MAX_AMOUNT:
        raise ValidationError(f"Amount {value} exceeds {MAX_AMOUNT}")
    return quantized


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Role(str, Enum):
    ADMIN = "admin"
    SUBADMIN = "subadmin"
    PLAYER = "player"


class UserStatus(str, Enum):
    ACTIVE = "active"
    BLOCKED = "blocked"


class EntityStatus(str, Enum):
    UPCOMING = "upcoming"
    OPEN = "open"
    CLOSED = "closed"


class ResultStatus(str, Enum):
    PENDING = "pending"
    DECLARED = "declared"


class TransactionKind(str, Enum):
    DEPOSIT = "deposit"
    WITHDRAWAL = "withdrawal"
    BET = "bet"
    WINNING = "winning"
    ADJUSTMENT = "adjustment"


class TransactionStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class WagerStatus(str, Enum):
    PENDING = "pending"
    WON = "won"
    LOST = "lost"
    UNRESOLVED = "unresolved"


class TargetKind(str, Enum):
    MARKET = "market"
    OPTION_GAME = "option_game"


class Decision(str, Enum):
    APPROVE = "approve"
    REJECT = "reject"


# Stored records


class User(BaseModel):
    id: UUID = Field(default_factory=uuid4)
    name: str
    role: Role = Role.PLAYER
    status: UserStatus = UserStatus.ACTIVE
    wallet_balance: Decimal = Decimal("0.00")
    subadmin_id: Optional[UUID] = None
    blocked_by: Optional[UUID] = None
    ledger_frozen: bool = False
    created_at: datetime = Field(default_factory=utcnow)

    model_config = ConfigDict(from_attributes=True)

    @property
    def is_active(self) -> bool:
        return self.status == UserStatus.ACTIVE


class LedgerEntry(BaseModel):
    id: UUID = Field(default_factory=uuid4)
    user_id: UUID
    kind: TransactionKind
    amount: Decimal
    status: TransactionStatus = TransactionStatus.APPROVED
    reference: str = ""
    remarks: str = ""
    approved_by: Optional[UUID] = None
    is_subadmin_transaction: bool = False
    wager_id: Optional[UUID] = None
    balance_after: Optional[Decimal] = None
    created_at: datetime = Field(default_factory=utcnow)
    resolved_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)

    @property
    def is_applied(self) -> bool:
        # pending withdrawals are pre-debited, so they already count
        if self.status == TransactionStatus.APPROVED:
            return True
        return self.kind == TransactionKind.WITHDRAWAL and self.status == TransactionStatus.PENDING

    def can_resolve(self) -> bool:
        return (
            self.kind in (TransactionKind.DEPOSIT, TransactionKind.WITHDRAWAL)
            and self.status == TransactionStatus.PENDING
        )


class Market(BaseModel):
    id: UUID = Field(default_factory=uuid4)
    name: str
    opening_time: Optional[datetime] = None
    closing_time: Optional[datetime] = None
    status: EntityStatus = EntityStatus.UPCOMING
    result_status: ResultStatus = ResultStatus.PENDING
    result_value: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)
    declared_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class GameTypeConfig(BaseModel):
    id: UUID = Field(default_factory=uuid4)
    market_id: UUID
    game_type: GameType
    is_active: bool = True
    odds: Decimal

    model_config = ConfigDict(from_attributes=True)


class OptionGame(BaseModel):
    id: UUID = Field(default_factory=uuid4)
    title: str
    team_a: str
    team_b: str
    opening_time: Optional[datetime] = None
    closing_time: Optional[datetime] = None
    status: EntityStatus = EntityStatus.UPCOMING
    result_status: ResultStatus = ResultStatus.PENDING
    winning_team: Optional[str] = None
    odds: Decimal
    created_at: datetime = Field(default_factory=utcnow)
    declared_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)

    def team_label(self, team: str) -> str:
        return self.team_a if team == "A" else self.team_b


class Wager(BaseModel):
    id: UUID = Field(default_factory=uuid4)
    user_id: UUID
    target_kind: TargetKind
    target_id: UUID
    game_type: GameType
    selection: str
    amount: Decimal
    odds: Decimal
    potential_winning: Decimal
    status: WagerStatus = WagerStatus.PENDING
    created_at: datetime = Field(default_factory=utcnow)
    settled_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


# Requests


class CreateUserRequest(BaseModel):
    name: str = Field(..., min_length=1)
    role: Role = Role.PLAYER
    subadmin_id: Optional[UUID] = None


class SetUserStatusRequest(BaseModel):
    status: UserStatus


class CreateMarketRequest(BaseModel):
    name: str = Field(..., min_length=1)
    opening_time: Optional[datetime] = None
    closing_time: Optional[datetime] = None


class GameTypeRequest(BaseModel):
    game_type: GameType
    odds: Decimal = Field(..., gt=0)
    is_active: bool = True


class UpdateGameTypeRequest(BaseModel):
    odds: Optional[Decimal] = Field(default=None, gt=0)
    is_active: Optional[bool] = None


class CreateOptionGameRequest(BaseModel):
    title: str = Field(..., min_length=1)
    team_a: str = Field(..., min_length=1)
    team_b: str = Field(..., min_length=1)
    odds: Optional[Decimal] = Field(default=None, gt=0)
    opening_time: Optional[datetime] = None
    closing_time: Optional[datetime] = None


class UpdateOddsRequest(BaseModel):
    odds: Decimal = Field(..., gt=0)


class PlaceMarketWagerRequest(BaseModel):
    market_id: UUID
    game_type: GameType
    selection: str
    amount: Decimal = Field(..., gt=0, max_digits=14, decimal_places=2)

    model_config = ConfigDict(json_schema_extra={
        "example": {
            "market_id": "550e8400-e29b-41d4-a716-446655440000",
            "game_type": "hurf",
            "selection": "Left:4",
            "amount": 100.00,
        }
    })


class PlaceOptionWagerRequest(BaseModel):
    option_game_id: UUID
    selection: str
    amount: Decimal = Field(..., gt=0, max_digits=14, decimal_places=2)


class DeclareMarketResultRequest(BaseModel):
    result_value: str


class DeclareOptionResultRequest(BaseModel):
    winning_team: str


class AmountRequest(BaseModel):
    amount: Decimal = Field(..., gt=0, max_digits=14, decimal_places=2)


class ResolveTransactionRequest(BaseModel):
    decision: Decision
    remarks: Optional[str] = None


class AdjustBalanceRequest(BaseModel):
    amount: Decimal = Field(..., max_digits=14, decimal_places=2)
    remarks: Optional[str] = None


# Responses


class UserBalance(BaseModel):
    user_id: UUID
    currency: str
    current_balance: Decimal
    applied_total: Decimal
    total_entries: int
    ledger_frozen: bool = False
    last_transaction_at: Optional[datetime] = None


class LedgerHistoryResponse(BaseModel):
    user_id: UUID
    entries: list[LedgerEntry]
    total_count: int
    current_balance: Decimal


class TransactionResponse(BaseModel):
    transaction: LedgerEntry
    user: User
    message: str


class SettlementReport(BaseModel):
    target_kind: TargetKind
    target_id: UUID
    result: str
    won: list[UUID] = Field(default_factory=list)
    lost: list[UUID] = Field(default_factory=list)
    unresolved: list[UUID] = Field(default_factory=list)
    failed: list[UUID] = Field(default_factory=list)
    total_credited: Decimal = Decimal("0.00")
    warnings: list[str] = Field(default_factory=list)
