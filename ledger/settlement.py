import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Optional, Union
from uuid import UUID

from notifications import MarketResultEvent, Notifier, OptionGameResultEvent, WalletUpdateEvent
from rules import MatchingEngine, SelectionError, parse_market_result, parse_option_result

from .accounts import require_admin
from .dispatch import send_to_all, send_to_user
from .errors import (
    AlreadyDeclaredError,
    FatalLedgerInconsistencyError,
    InvalidStateTransitionError,
    NotFoundError,
    ValidationError,
)
from .markets import entity_lock_key
from .models import (
    EntityStatus,
    LedgerEntry,
    Market,
    OptionGame,
    ResultStatus,
    SettlementReport,
    TargetKind,
    TransactionKind,
    TransactionStatus,
    User,
    Wager,
    WagerStatus,
    to_money,
    utcnow,
)
from .service import LedgerService


logger = logging.getLogger(__name__)

Target = Union[Market, OptionGame]


@dataclass
class _Credit:
    amount: Decimal = Decimal("0.00")
    new_balance: Decimal = Decimal("0.00")
    transaction_id: Optional[UUID] = None


class SettlementEngine:
    """Declares results and settles every pending wager on the target.

    The pending -> declared flip happens under the target's lock and is the
    only way into a settlement pass, so concurrent declarations produce one
    pass and one set of credits. Each winning wager is settled in its own unit
    of work together with its ``winning`` entry and balance credit.
    """

    def __init__(
        self,
        ledger: LedgerService,
        notifier: Optional[Notifier] = None,
        matching: Optional[MatchingEngine] = None,
    ):
        self.ledger = ledger
        self.storage = ledger.storage
        self.notifier = notifier
        self.matching = matching or MatchingEngine()

    def declare_market_result(self, market_id: UUID, result_value: str, actor: User) -> SettlementReport:
        return self.declare_result(TargetKind.MARKET, market_id, result_value, actor)

    def declare_option_result(self, game_id: UUID, winning_team: str, actor: User) -> SettlementReport:
        return self.declare_result(TargetKind.OPTION_GAME, game_id, winning_team, actor)

    def declare_result(
        self,
        target_kind: TargetKind,
        target_id: UUID,
        payload: str,
        actor: User,
    ) -> SettlementReport:
        require_admin(actor)
        try:
            if target_kind == TargetKind.MARKET:
                result = parse_market_result(payload)
            else:
                result = parse_option_result(payload)
        except SelectionError as e:
            raise ValidationError(str(e))

        target = None
        report = None
        credits: dict[UUID, _Credit] = {}
        try:
            with self.storage.lock(entity_lock_key(target_kind, target_id)):
                target = self._declare(target_kind, target_id, result)
                logger.info("Result %s declared for %s %s by %s", result, target_kind.value, target_id, actor.id)
                report = SettlementReport(target_kind=target_kind, target_id=target_id, result=result)
                self._settle_pending(target_kind, target_id, result, report, credits)
        finally:
            if report is not None:
                self._announce(target_kind, target, report, credits, broadcast=True)
        return report

    def resume_settlement(self, target_kind: TargetKind, target_id: UUID, actor: User) -> SettlementReport:
        """Settle wagers left pending on an already declared target."""
        require_admin(actor)
        target = None
        report = None
        credits: dict[UUID, _Credit] = {}
        try:
            with self.storage.lock(entity_lock_key(target_kind, target_id)):
                target = self._get_target(target_kind, target_id)
                if target.result_status != ResultStatus.DECLARED:
                    raise InvalidStateTransitionError(f"No result declared for {target_kind.value} {target_id}")
                result = self._result_of(target)
                report = SettlementReport(target_kind=target_kind, target_id=target_id, result=result)
                self._settle_pending(target_kind, target_id, result, report, credits)
        finally:
            if report is not None:
                self._announce(target_kind, target, report, credits, broadcast=False)
        return report

    def _get_target(self, target_kind: TargetKind, target_id: UUID) -> Target:
        if target_kind == TargetKind.MARKET:
            target = self.storage.get_market(target_id)
        else:
            target = self.storage.get_option_game(target_id)
        if not target:
            raise NotFoundError(f"{target_kind.value} {target_id} not found")
        return target

    @staticmethod
    def _result_of(target: Target) -> str:
        if isinstance(target, Market):
            return target.result_value
        return target.winning_team

    def _declare(self, target_kind: TargetKind, target_id: UUID, result: str) -> Target:
        target = self._get_target(target_kind, target_id)
        if target.result_status == ResultStatus.DECLARED:
            raise AlreadyDeclaredError(
                f"Result already declared for {target_kind.value} {target_id}: {self._result_of(target)}"
            )
        if target.status != EntityStatus.CLOSED:
            raise InvalidStateTransitionError(
                f"{target_kind.value} {target_id} must be closed before declaring a result"
            )

        target.result_status = ResultStatus.DECLARED
        target.declared_at = utcnow()
        if isinstance(target, Market):
            target.result_value = result
            return self.storage.save_market(target)
        target.winning_team = result
        return self.storage.save_option_game(target)

    def _settle_pending(
        self,
        target_kind: TargetKind,
        target_id: UUID,
        result: str,
        report: SettlementReport,
        credits: dict[UUID, _Credit],
    ) -> None:
        failures: list[FatalLedgerInconsistencyError] = []

        for wager in self.storage.list_wagers_by_target(target_id, status=WagerStatus.PENDING):
            try:
                won = self.matching.is_winner(wager.game_type, wager.selection, result)
            except Exception as e:
                logger.exception("Wager %s (%s %r) could not be evaluated", wager.id, wager.game_type.value, wager.selection)
                won = None
                report.warnings.append(f"Wager {wager.id} left unresolved: {e}")

            try:
                if won is None:
                    self._close_wager(wager, WagerStatus.UNRESOLVED)
                    report.unresolved.append(wager.id)
                elif won:
                    self._pay(wager, target_kind, report, credits)
                else:
                    self._close_wager(wager, WagerStatus.LOST)
                    report.lost.append(wager.id)
            except FatalLedgerInconsistencyError as e:
                failures.append(e)
                report.failed.append(wager.id)
                report.warnings.append(f"Wager {wager.id} not paid: {e}")
            except Exception as e:
                # left pending for resume_settlement
                logger.exception("Wager %s could not be settled", wager.id)
                report.failed.append(wager.id)
                report.warnings.append(f"Wager {wager.id} not settled: {e}")

        if report.unresolved:
            logger.warning(
                "Settlement of %s %s left %d wager(s) unresolved",
                target_kind.value, target_id, len(report.unresolved),
            )
        logger.info(
            "Settled %s %s: %d won, %d lost, %s credited",
            target_kind.value, target_id, len(report.won), len(report.lost), report.total_credited,
        )

        if failures:
            error = FatalLedgerInconsistencyError(
                failures[0].user_id,
                f"{len(failures)} winning wager(s) on {target_kind.value} {target_id} could not be paid; "
                f"affected ledgers are frozen until reconciled",
                report=report,
            )
            raise error

    def _close_wager(self, wager: Wager, status: WagerStatus) -> Wager:
        wager.status = status
        wager.settled_at = utcnow()
        return self.storage.save_wager(wager)

    def _pay(
        self,
        wager: Wager,
        target_kind: TargetKind,
        report: SettlementReport,
        credits: dict[UUID, _Credit],
    ) -> None:
        with self.ledger.mutation(wager.user_id) as user:
            self._close_wager(wager, WagerStatus.WON)
            user, entry = self.ledger.apply(user, LedgerEntry(
                user_id=user.id,
                kind=TransactionKind.WINNING,
                amount=wager.potential_winning,
                status=TransactionStatus.APPROVED,
                reference=f"Win on {target_kind.value} {wager.target_id} - {wager.game_type.value}",
                remarks=f"Won bet {wager.id}",
                wager_id=wager.id,
            ))

        report.won.append(wager.id)
        report.total_credited = to_money(report.total_credited + entry.amount)
        credit = credits.setdefault(user.id, _Credit())
        credit.amount = to_money(credit.amount + entry.amount)
        credit.new_balance = user.wallet_balance
        credit.transaction_id = entry.id

    def _announce(
        self,
        target_kind: TargetKind,
        target: Target,
        report: SettlementReport,
        credits: dict[UUID, _Credit],
        broadcast: bool,
    ) -> None:
        if broadcast:
            if target_kind == TargetKind.MARKET:
                event = MarketResultEvent(
                    market_id=target.id,
                    result=report.result,
                    message=f"Market result has been declared: {report.result}",
                )
            else:
                event = OptionGameResultEvent(
                    option_game_id=target.id,
                    game_title=target.title,
                    winning_team=report.result,
                    message=f"Result for {target.title}: Team {report.result} has won!",
                )
            send_to_all(self.notifier, event)

        for user_id, credit in credits.items():
            send_to_user(self.notifier, user_id, WalletUpdateEvent(
                user_id=user_id,
                amount=credit.amount,
                new_balance=credit.new_balance,
                transaction_id=credit.transaction_id,
                message=f"You won {credit.amount}! Your wallet has been credited",
            ))
