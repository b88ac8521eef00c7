from decimal import Decimal

import pytest

from ledger import (
    AccountService,
    ApprovalService,
    InMemoryStorage,
    LedgerService,
    MarketService,
    Role,
    SettlementEngine,
    User,
    Wager,
    WagerIntake,
)
from ledger.models import CreateMarketRequest, CreateOptionGameRequest, GameTypeRequest
from notifications import ConnectionRegistry
from rules import GameType


MARKET_ODDS = {
    GameType.JODI: Decimal("90"),
    GameType.HURF: Decimal("9"),
    GameType.CROSS: Decimal("15"),
    GameType.ODD_EVEN: Decimal("1.9"),
}


class RecordingConnection:
    def __init__(self):
        self.payloads = []

    def send(self, payload: dict) -> None:
        self.payloads.append(payload)

    def of_type(self, event_type: str) -> list:
        return [p for p in self.payloads if p["type"] == event_type]


class FaultInjectingStorage(InMemoryStorage):
    """In-memory storage whose next `fail_user_saves` user writes raise,
    as do writes of any wager listed in `failing_wager_ids`."""

    def __init__(self):
        super().__init__()
        self.fail_user_saves = 0
        self.failing_wager_ids = set()

    def save_user(self, user: User) -> User:
        if self.fail_user_saves:
            self.fail_user_saves -= 1
            raise RuntimeError("user table unavailable")
        return super().save_user(user)

    def save_wager(self, wager: Wager) -> Wager:
        if wager.id in self.failing_wager_ids:
            raise RuntimeError("wager table unavailable")
        return super().save_wager(wager)


@pytest.fixture
def storage():
    return FaultInjectingStorage()


@pytest.fixture
def registry():
    return ConnectionRegistry()


@pytest.fixture
def accounts(storage):
    return AccountService(storage)


@pytest.fixture
def ledger_service(storage):
    return LedgerService(storage)


@pytest.fixture
def markets(storage):
    return MarketService(storage)


@pytest.fixture
def approvals(ledger_service, registry):
    return ApprovalService(ledger_service, registry)


@pytest.fixture
def intake(ledger_service, markets):
    return WagerIntake(ledger_service, markets)


@pytest.fixture
def settlement(ledger_service, registry):
    return SettlementEngine(ledger_service, registry)


@pytest.fixture
def admin(storage):
    return storage.save_user(User(name="Root Admin", role=Role.ADMIN))


@pytest.fixture
def subadmin(storage):
    return storage.save_user(User(name="Desk Subadmin", role=Role.SUBADMIN))


@pytest.fixture
def make_player(storage, approvals, admin, subadmin, ledger_service):
    def _make(name: str = "Player", balance: Decimal = Decimal("1000.00")) -> User:
        player = storage.save_user(User(name=name, role=Role.PLAYER, subadmin_id=subadmin.id))
        if balance:
            approvals.adjust_balance(player.id, balance, admin, "Opening balance")
        return ledger_service.get_user(player.id)
    return _make


@pytest.fixture
def player(make_player):
    return make_player()


@pytest.fixture
def open_market(markets, admin):
    market = markets.create_market(CreateMarketRequest(name="Kalyan Morning"), admin)
    for game_type, odds in MARKET_ODDS.items():
        markets.add_game_type(market.id, GameTypeRequest(game_type=game_type, odds=odds), admin)
    return markets.open_market(market.id, admin)


@pytest.fixture
def open_option_game(markets, admin):
    game = markets.create_option_game(
        CreateOptionGameRequest(title="Final", team_a="Lions", team_b="Tigers", odds=Decimal("1.9")),
        admin,
    )
    return markets.open_option_game(game.id, admin)


@pytest.fixture
def connect(registry):
    def _connect(user_id=None) -> RecordingConnection:
        connection = RecordingConnection()
        registry.register(connection, user_id)
        return connection
    return _connect
