import logging
from decimal import Decimal
from typing import Optional
from uuid import UUID

from rules import GameType, MatchingEngine, SelectionError

from .accounts import require_active, require_player
from .errors import InsufficientBalanceError, NotOpenError, ValidationError
from .markets import MarketService, entity_lock_key
from .models import (
    EntityStatus,
    LedgerEntry,
    PlaceMarketWagerRequest,
    PlaceOptionWagerRequest,
    TargetKind,
    TransactionKind,
    TransactionStatus,
    Wager,
    parse_amount,
    to_money,
)
from .service import LedgerService


logger = logging.getLogger(__name__)


class WagerIntake:
    """Accepts wagers against open markets and option games.

    The wager row, its ``bet`` ledger entry and the balance debit are written in
    one unit of work under the target's lock and then the user's lock, so a
    wager can never land on a target that has since been closed.
    """

    def __init__(
        self,
        ledger: LedgerService,
        markets: Optional[MarketService] = None,
        matching: Optional[MatchingEngine] = None,
    ):
        self.ledger = ledger
        self.storage = ledger.storage
        self.markets = markets or MarketService(ledger.storage)
        self.matching = matching or MatchingEngine()

    def place_market_wager(self, user_id: UUID, request: PlaceMarketWagerRequest) -> Wager:
        return self.place_wager(
            user_id, TargetKind.MARKET, request.market_id, request.selection, request.amount,
            game_type=request.game_type,
        )

    def place_option_wager(self, user_id: UUID, request: PlaceOptionWagerRequest) -> Wager:
        return self.place_wager(
            user_id, TargetKind.OPTION_GAME, request.option_game_id, request.selection, request.amount,
        )

    def place_wager(
        self,
        user_id: UUID,
        target_kind: TargetKind,
        target_id: UUID,
        selection: str,
        amount: Decimal,
        game_type: Optional[GameType] = None,
    ) -> Wager:
        amount = parse_amount(amount)
        if amount <= 0:
            raise ValidationError("Wager amount must be greater than zero")

        with self.storage.lock(entity_lock_key(target_kind, target_id)):
            game_type, odds = self._current_odds(target_kind, target_id, game_type)
            try:
                selection = self.matching.normalize_selection(game_type, selection)
            except SelectionError as e:
                raise ValidationError(str(e))

            with self.ledger.mutation(user_id) as user:
                require_player(user)
                require_active(user)
                if user.wallet_balance < amount:
                    raise InsufficientBalanceError(
                        f"Balance {user.wallet_balance} is insufficient for a wager of {amount}"
                    )

                wager = Wager(
                    user_id=user.id,
                    target_kind=target_kind,
                    target_id=target_id,
                    game_type=game_type,
                    selection=selection,
                    amount=amount,
                    odds=odds,
                    potential_winning=to_money(amount * odds),
                )
                self.ledger.apply(user, LedgerEntry(
                    user_id=user.id,
                    kind=TransactionKind.BET,
                    amount=-amount,
                    status=TransactionStatus.APPROVED,
                    reference=f"Bet on {target_kind.value} {target_id}",
                    remarks=f"{game_type.value} bet: {selection}",
                    wager_id=wager.id,
                ))
                wager = self.storage.save_wager(wager)

        logger.info(
            "Wager %s placed by %s: %s %s on %s for %s (potential %s)",
            wager.id, user_id, game_type.value, selection, target_id, amount, wager.potential_winning,
        )
        return wager

    def _current_odds(
        self,
        target_kind: TargetKind,
        target_id: UUID,
        game_type: Optional[GameType],
    ) -> tuple[GameType, Decimal]:
        if target_kind == TargetKind.OPTION_GAME:
            game = self.markets.get_option_game(target_id)
            if game.status != EntityStatus.OPEN:
                raise NotOpenError(f"Option game {target_id} is not open for betting")
            return GameType.OPTION, game.odds

        if game_type is None:
            raise ValidationError("A game type is required for market wagers")
        game_type = GameType(game_type)
        market = self.markets.get_market(target_id)
        if market.status != EntityStatus.OPEN:
            raise NotOpenError(f"Market {target_id} is not open for betting")
        config = self.markets.active_game_type(target_id, game_type)
        if config is None:
            raise NotOpenError(f"{game_type.value} is not open on market {target_id}")
        return game_type, config.odds

    def list_user_wagers(self, user_id: UUID) -> list[Wager]:
        self.ledger.get_user(user_id)
        return self.storage.list_wagers_by_user(user_id)

    def list_target_wagers(self, target_id: UUID) -> list[Wager]:
        return self.storage.list_wagers_by_target(target_id)
