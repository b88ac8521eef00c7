import logging
from decimal import Decimal
from typing import Optional
from uuid import UUID

from rules import MARKET_GAME_TYPES, GameType

from .accounts import require_admin
from .errors import InvalidStateTransitionError, NotFoundError, ValidationError
from .models import (
    CreateMarketRequest,
    CreateOptionGameRequest,
    EntityStatus,
    GameTypeConfig,
    GameTypeRequest,
    Market,
    OptionGame,
    TargetKind,
    UpdateGameTypeRequest,
    User,
)
from .settings import get_settings
from .storage import InMemoryStorage, StoragePort


logger = logging.getLogger(__name__)

# one-directional lifecycle: upcoming -> open -> closed
_NEXT_STATUS = {
    EntityStatus.UPCOMING: EntityStatus.OPEN,
    EntityStatus.OPEN: EntityStatus.CLOSED,
}


def entity_lock_key(kind: TargetKind, entity_id: UUID) -> tuple:
    return (kind.value, entity_id)


class MarketService:
    def __init__(self, storage: Optional[StoragePort] = None):
        self.storage = storage or InMemoryStorage()

    # Markets

    def get_market(self, market_id: UUID) -> Market:
        market = self.storage.get_market(market_id)
        if not market:
            raise NotFoundError(f"Market {market_id} not found")
        return market

    def create_market(self, request: CreateMarketRequest, actor: User) -> Market:
        require_admin(actor)
        self._check_window(request.opening_time, request.closing_time)
        market = self.storage.save_market(Market(
            name=request.name,
            opening_time=request.opening_time,
            closing_time=request.closing_time,
        ))
        logger.info("Market %s (%s) created by %s", market.id, market.name, actor.id)
        return market

    def list_markets(self, status: Optional[EntityStatus] = None) -> list[Market]:
        markets = self.storage.list_markets()
        if status is not None:
            markets = [m for m in markets if m.status == status]
        return sorted(markets, key=lambda m: m.created_at)

    def add_game_type(self, market_id: UUID, request: GameTypeRequest, actor: User) -> GameTypeConfig:
        require_admin(actor)
        if request.game_type not in MARKET_GAME_TYPES:
            raise ValidationError(f"{request.game_type.value} is not a market game type")

        with self.storage.lock(entity_lock_key(TargetKind.MARKET, market_id)):
            market = self.get_market(market_id)
            if market.status == EntityStatus.CLOSED:
                raise InvalidStateTransitionError(f"Market {market_id} is closed")
            if any(c.game_type == request.game_type for c in self.storage.list_game_types(market_id)):
                raise ValidationError(f"Market {market_id} already offers {request.game_type.value}")

            config = self.storage.save_game_type(GameTypeConfig(
                market_id=market_id,
                game_type=request.game_type,
                is_active=request.is_active,
                odds=request.odds,
            ))

        logger.info("Game type %s at x%s added to market %s", config.game_type.value, config.odds, market_id)
        return config

    def update_game_type(self, config_id: UUID, request: UpdateGameTypeRequest, actor: User) -> GameTypeConfig:
        require_admin(actor)
        config = self.storage.get_game_type(config_id)
        if not config:
            raise NotFoundError(f"Game type {config_id} not found")

        # placed wagers keep the odds they were placed at
        with self.storage.lock(entity_lock_key(TargetKind.MARKET, config.market_id)):
            config = self.storage.get_game_type(config_id)
            if request.odds is not None:
                config.odds = request.odds
            if request.is_active is not None:
                config.is_active = request.is_active
            config = self.storage.save_game_type(config)

        logger.info("Game type %s updated: odds=%s active=%s", config_id, config.odds, config.is_active)
        return config

    def list_game_types(self, market_id: UUID, active_only: bool = False) -> list[GameTypeConfig]:
        self.get_market(market_id)
        configs = self.storage.list_game_types(market_id)
        if active_only:
            configs = [c for c in configs if c.is_active]
        return configs

    def active_game_type(self, market_id: UUID, game_type: GameType) -> Optional[GameTypeConfig]:
        for config in self.storage.list_game_types(market_id):
            if config.game_type == game_type and config.is_active:
                return config
        return None

    def open_market(self, market_id: UUID, actor: User) -> Market:
        return self._advance_market(market_id, EntityStatus.OPEN, actor)

    def close_market(self, market_id: UUID, actor: User) -> Market:
        return self._advance_market(market_id, EntityStatus.CLOSED, actor)

    def _advance_market(self, market_id: UUID, target: EntityStatus, actor: User) -> Market:
        require_admin(actor)
        with self.storage.lock(entity_lock_key(TargetKind.MARKET, market_id)):
            market = self.get_market(market_id)
            self._check_transition(market.status, target, f"Market {market_id}")
            market.status = target
            market = self.storage.save_market(market)
        logger.info("Market %s is now %s", market_id, target.value)
        return market

    # Option games

    def get_option_game(self, game_id: UUID) -> OptionGame:
        game = self.storage.get_option_game(game_id)
        if not game:
            raise NotFoundError(f"Option game {game_id} not found")
        return game

    def create_option_game(self, request: CreateOptionGameRequest, actor: User) -> OptionGame:
        require_admin(actor)
        self._check_window(request.opening_time, request.closing_time)
        game = self.storage.save_option_game(OptionGame(
            title=request.title,
            team_a=request.team_a,
            team_b=request.team_b,
            odds=request.odds if request.odds is not None else get_settings().default_option_odds,
            opening_time=request.opening_time,
            closing_time=request.closing_time,
        ))
        logger.info("Option game %s (%s) created by %s", game.id, game.title, actor.id)
        return game

    def list_option_games(self, status: Optional[EntityStatus] = None) -> list[OptionGame]:
        games = self.storage.list_option_games()
        if status is not None:
            games = [g for g in games if g.status == status]
        return sorted(games, key=lambda g: g.created_at)

    def update_option_odds(self, game_id: UUID, odds: Decimal, actor: User) -> OptionGame:
        require_admin(actor)
        with self.storage.lock(entity_lock_key(TargetKind.OPTION_GAME, game_id)):
            game = self.get_option_game(game_id)
            if game.status == EntityStatus.CLOSED:
                raise InvalidStateTransitionError(f"Option game {game_id} is closed")
            game.odds = odds
            game = self.storage.save_option_game(game)
        logger.info("Option game %s odds set to x%s", game_id, odds)
        return game

    def open_option_game(self, game_id: UUID, actor: User) -> OptionGame:
        return self._advance_option_game(game_id, EntityStatus.OPEN, actor)

    def close_option_game(self, game_id: UUID, actor: User) -> OptionGame:
        return self._advance_option_game(game_id, EntityStatus.CLOSED, actor)

    def _advance_option_game(self, game_id: UUID, target: EntityStatus, actor: User) -> OptionGame:
        require_admin(actor)
        with self.storage.lock(entity_lock_key(TargetKind.OPTION_GAME, game_id)):
            game = self.get_option_game(game_id)
            self._check_transition(game.status, target, f"Option game {game_id}")
            game.status = target
            game = self.storage.save_option_game(game)
        logger.info("Option game %s is now %s", game_id, target.value)
        return game

    @staticmethod
    def _check_transition(current: EntityStatus, target: EntityStatus, label: str) -> None:
        if _NEXT_STATUS.get(current) != target:
            raise InvalidStateTransitionError(f"{label} cannot move from {current.value} to {target.value}")

    @staticmethod
    def _check_window(opening_time, closing_time) -> None:
        if opening_time and closing_time and closing_time <= opening_time:
            raise ValidationError("Closing time must be after opening time")
