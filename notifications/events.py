from decimal import Decimal
from typing import Literal, Optional, Union
from uuid import UUID

from pydantic import BaseModel


class WalletUpdateEvent(BaseModel):
    type: Literal["wallet_update"] = "wallet_update"
    user_id: UUID
    amount: Decimal
    new_balance: Decimal
    transaction_id: Optional[UUID] = None
    message: str


class TransactionStatusEvent(BaseModel):
    type: Literal["transaction_status"] = "transaction_status"
    user_id: UUID
    transaction_id: UUID
    transaction_type: str
    status: str
    amount: Decimal
    new_balance: Decimal
    message: str


class MarketResultEvent(BaseModel):
    type: Literal["market_result"] = "market_result"
    market_id: UUID
    result: str
    message: str


class OptionGameResultEvent(BaseModel):
    type: Literal["option_game_result"] = "option_game_result"
    option_game_id: UUID
    game_title: str
    winning_team: str
    message: str


NotificationEvent = Union[
    WalletUpdateEvent,
    TransactionStatusEvent,
    MarketResultEvent,
    OptionGameResultEvent,
]


def to_payload(event: BaseModel) -> dict:
    return event.model_dump(mode="json")
