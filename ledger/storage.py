import threading
from abc import ABC, abstractmethod
from contextlib import contextmanager
from typing import Hashable, Iterator, Optional
from uuid import UUID

from .models import (
    User,
    Market,
    GameTypeConfig,
    OptionGame,
    Wager,
    WagerStatus,
    LedgerEntry,
    TransactionStatus,
)


class StoragePort(ABC):
    """Persistence contract the ledger core depends on.

    ``atomic()`` opens a unit of work: every write made inside it lands
    together or, if the block raises, none of them do. ``lock(key)`` hands out
    the exclusive lock for a user or entity id; callers take entity locks
    before user locks.
    """

    @abstractmethod
    def atomic(self): ...

    @abstractmethod
    def lock(self, key: Hashable): ...

    @abstractmethod
    def get_user(self, user_id: UUID) -> Optional[User]: ...

    @abstractmethod
    def save_user(self, user: User) -> User: ...

    @abstractmethod
    def list_users(self, subadmin_id: Optional[UUID] = None) -> list[User]: ...

    @abstractmethod
    def get_market(self, market_id: UUID) -> Optional[Market]: ...

    @abstractmethod
    def save_market(self, market: Market) -> Market: ...

    @abstractmethod
    def list_markets(self) -> list[Market]: ...

    @abstractmethod
    def get_game_type(self, config_id: UUID) -> Optional[GameTypeConfig]: ...

    @abstractmethod
    def save_game_type(self, config: GameTypeConfig) -> GameTypeConfig: ...

    @abstractmethod
    def list_game_types(self, market_id: UUID) -> list[GameTypeConfig]: ...

    @abstractmethod
    def get_option_game(self, game_id: UUID) -> Optional[OptionGame]: ...

    @abstractmethod
    def save_option_game(self, game: OptionGame) -> OptionGame: ...

    @abstractmethod
    def list_option_games(self) -> list[OptionGame]: ...

    @abstractmethod
    def get_wager(self, wager_id: UUID) -> Optional[Wager]: ...

    @abstractmethod
    def save_wager(self, wager: Wager) -> Wager: ...

    @abstractmethod
    def list_wagers_by_target(self, target_id: UUID, status: Optional[WagerStatus] = None) -> list[Wager]: ...

    @abstractmethod
    def list_wagers_by_user(self, user_id: UUID) -> list[Wager]: ...

    @abstractmethod
    def get_entry(self, entry_id: UUID) -> Optional[LedgerEntry]: ...

    @abstractmethod
    def add_entry(self, entry: LedgerEntry) -> LedgerEntry: ...

    @abstractmethod
    def update_entry(self, entry: LedgerEntry) -> LedgerEntry: ...

    @abstractmethod
    def list_entries(
        self,
        user_id: Optional[UUID] = None,
        status: Optional[TransactionStatus] = None,
    ) -> list[LedgerEntry]: ...


class InMemoryStorage(StoragePort):
    def __init__(self):
        self.users: dict[UUID, User] = {}
        self.markets: dict[UUID, Market] = {}
        self.game_types: dict[UUID, GameTypeConfig] = {}
        self.option_games: dict[UUID, OptionGame] = {}
        self.wagers: dict[UUID, Wager] = {}
        self.ledger_entries: dict[UUID, LedgerEntry] = {}

        self._guard = threading.RLock()
        self._locks: dict[Hashable, threading.RLock] = {}
        self._local = threading.local()

    # Units of work

    @contextmanager
    def atomic(self) -> Iterator[None]:
        if getattr(self._local, "journal", None) is not None:
            yield
            return

        self._local.journal = []
        try:
            yield
        except BaseException:
            self._rollback(self._local.journal)
            raise
        finally:
            self._local.journal = None

    def _rollback(self, journal: list) -> None:
        with self._guard:
            for table, key, previous in reversed(journal):
                if previous is None:
                    table.pop(key, None)
                else:
                    table[key] = previous

    def lock(self, key: Hashable) -> threading.RLock:
        with self._guard:
            return self._locks.setdefault(key, threading.RLock())

    def _write(self, table: dict, key: UUID, value):
        stored = value.model_copy()
        with self._guard:
            journal = getattr(self._local, "journal", None)
            if journal is not None:
                journal.append((table, key, table.get(key)))
            table[key] = stored
        return stored.model_copy()

    def _read(self, table: dict, key: UUID):
        with self._guard:
            value = table.get(key)
        return value.model_copy() if value is not None else None

    def _select(self, table: dict, predicate=None) -> list:
        with self._guard:
            values = list(table.values())
        return [v.model_copy() for v in values if predicate is None or predicate(v)]

    # Users

    def get_user(self, user_id: UUID) -> Optional[User]:
        return self._read(self.users, user_id)

    def save_user(self, user: User) -> User:
        return self._write(self.users, user.id, user)

    def list_users(self, subadmin_id: Optional[UUID] = None) -> list[User]:
        if subadmin_id is None:
            return self._select(self.users)
        return self._select(self.users, lambda u: u.subadmin_id == subadmin_id)

    # Markets

    def get_market(self, market_id: UUID) -> Optional[Market]:
        return self._read(self.markets, market_id)

    def save_market(self, market: Market) -> Market:
        return self._write(self.markets, market.id, market)

    def list_markets(self) -> list[Market]:
        return self._select(self.markets)

    def get_game_type(self, config_id: UUID) -> Optional[GameTypeConfig]:
        return self._read(self.game_types, config_id)

    def save_game_type(self, config: GameTypeConfig) -> GameTypeConfig:
        return self._write(self.game_types, config.id, config)

    def list_game_types(self, market_id: UUID) -> list[GameTypeConfig]:
        return self._select(self.game_types, lambda c: c.market_id == market_id)

    # Option games

    def get_option_game(self, game_id: UUID) -> Optional[OptionGame]:
        return self._read(self.option_games, game_id)

    def save_option_game(self, game: OptionGame) -> OptionGame:
        return self._write(self.option_games, game.id, game)

    def list_option_games(self) -> list[OptionGame]:
        return self._select(self.option_games)

    # Wagers

    def get_wager(self, wager_id: UUID) -> Optional[Wager]:
        return self._read(self.wagers, wager_id)

    def save_wager(self, wager: Wager) -> Wager:
        return self._write(self.wagers, wager.id, wager)

    def list_wagers_by_target(self, target_id: UUID, status: Optional[WagerStatus] = None) -> list[Wager]:
        wagers = self._select(
            self.wagers,
            lambda w: w.target_id == target_id and (status is None or w.status == status),
        )
        wagers.sort(key=lambda w: w.created_at)
        return wagers

    def list_wagers_by_user(self, user_id: UUID) -> list[Wager]:
        wagers = self._select(self.wagers, lambda w: w.user_id == user_id)
        wagers.sort(key=lambda w: w.created_at, reverse=True)
        return wagers

    # Ledger entries

    def get_entry(self, entry_id: UUID) -> Optional[LedgerEntry]:
        return self._read(self.ledger_entries, entry_id)

    def add_entry(self, entry: LedgerEntry) -> LedgerEntry:
        with self._guard:
            if entry.id in self.ledger_entries:
                raise ValueError(f"Ledger entry {entry.id} already exists")
        return self._write(self.ledger_entries, entry.id, entry)

    def update_entry(self, entry: LedgerEntry) -> LedgerEntry:
        existing = self._read(self.ledger_entries, entry.id)
        if existing is None:
            raise KeyError(entry.id)
        if (existing.user_id, existing.kind, existing.amount) != (entry.user_id, entry.kind, entry.amount):
            raise ValueError(f"Ledger entry {entry.id} is append-only; only its status may change")
        return self._write(self.ledger_entries, entry.id, entry)

    def list_entries(
        self,
        user_id: Optional[UUID] = None,
        status: Optional[TransactionStatus] = None,
    ) -> list[LedgerEntry]:
        return self._select(
            self.ledger_entries,
            lambda e: (user_id is None or e.user_id == user_id) and (status is None or e.status == status),
        )
