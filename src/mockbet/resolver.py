import asyncio
import logging
import random
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from .exceptions import (
    MatchAlreadySettledError,
    MatchNotFoundError,
    StorageError,
    ValidationError,
)
from .models import ComboBet, Outcome, SettlementReport, SettlementSummary, SimpleBet
from .notifications import send_win_notification
from .payout import compute_payout, simulate_outcome
from .status import advance_match_statuses
from .storage import Storage

logger = logging.getLogger(__name__)


def _require_match_id(match_id):
    if not match_id or not isinstance(match_id, str):
        raise ValidationError("Match ID is required")


@dataclass
class ComboSummary:
    resolved: int = 0
    won: int = 0
    failed: int = 0
    pending: int = 0
    skipped: int = 0
    tokens_paid: int = 0
    diamonds_paid: int = 0


class BetResolver:
    """
    Settles simple and combo bets against recorded match results.

    At-most-once settlement rests on the storage layer: a bet is only
    resolved (and credited) if it is still pending at write time, so
    concurrent resolvers cannot pay the same bet twice.
    """

    def __init__(self, storage: Storage, notify: bool = True, rng: Optional[random.Random] = None):
        self.storage = storage
        self.notify = notify
        self.rng = rng or random.Random()

    # --- Interactive trigger ---

    async def resolve_match(self, match_id: str, result) -> SettlementSummary:
        """Record a match result, then settle its simple bets and any combo it completes."""
        _require_match_id(match_id)
        try:
            outcome = Outcome.parse(result)
        except ValueError:
            raise ValidationError("Valid result (Home, Draw or Away) is required") from None

        match = await self.storage.find_match(match_id)
        if not match:
            raise MatchNotFoundError(f"Match {match_id} not found")
        if match.result is not None:
            raise MatchAlreadySettledError("Match result already processed")

        if not await self.storage.record_match_result(match_id, outcome):
            # Another writer recorded a result between our read and write
            raise MatchAlreadySettledError("Match result already processed")
        logger.info(f"Match {match.name} settled as {outcome.value}")

        summary = await self.resolve_match_bets(match_id, outcome, match_name=match.name)

        try:
            combos = await self.resolve_combo_bets(match_id=match_id)
            summary.combo_resolved = combos.resolved
            summary.combo_failed = combos.failed
        except StorageError as e:
            # Pending combos are picked up again by the next scheduled pass
            logger.error(f"Combo evaluation after match {match_id} failed: {e}")

        return summary

    async def simulate_match(self, match_id: str) -> SettlementSummary:
        """Draw a result weighted by implied probability and settle with it."""
        _require_match_id(match_id)
        match = await self.storage.find_match(match_id)
        if not match:
            raise MatchNotFoundError(f"Match {match_id} not found")
        if match.result is not None:
            raise MatchAlreadySettledError("Match not available for simulation")

        outcome = simulate_outcome(match, self.rng)
        logger.info(f"Simulated {match.name}: {outcome.value}")
        return await self.resolve_match(match_id, outcome)

    # --- Bet Resolver ---

    async def resolve_match_bets(self, match_id: str, result: Outcome,
                                 match_name: Optional[str] = None) -> SettlementSummary:
        """Settle every pending simple bet of one match. Per-bet failures are isolated."""
        summary = SettlementSummary(match_id=match_id, result=result)
        pending = await self.storage.list_pending_bets(match_id)
        if not pending:
            return summary

        logger.info(f"Resolving {len(pending)} bets for match {match_id}")
        for bet in pending:
            try:
                applied = await self._settle_simple(bet, result)
            except Exception as e:
                logger.error(f"Error resolving bet {bet.id}: {e}")
                summary.failed += 1
                continue

            if not applied:
                logger.info(f"Bet {bet.id} already resolved elsewhere, skipping")
                summary.skipped += 1
            elif bet.is_win:
                summary.won += 1
                summary.tokens_paid += bet.tokens_won
                summary.diamonds_paid += bet.diamonds_won
                await self._notify_win(bet, match_name)
            else:
                summary.lost += 1

        logger.info(f"Match {match_id}: {summary.won} won, {summary.lost} lost, {summary.failed} failed")
        return summary

    async def _settle_simple(self, bet: SimpleBet, result: Outcome) -> bool:
        is_win = bet.choice == result
        tokens_won = diamonds_won = 0
        if is_win:
            payout = compute_payout(bet.stake, bet.odds, bet.currency)
            tokens_won, diamonds_won = payout.tokens_won, payout.diamonds_won

        applied = await self.storage.update_bet_resolution(bet, is_win, tokens_won, diamonds_won)
        if applied:
            bet.is_win, bet.tokens_won, bet.diamonds_won = is_win, tokens_won, diamonds_won
        return applied

    # --- Combo Resolver ---

    async def resolve_combo_bets(self, match_id: Optional[str] = None) -> ComboSummary:
        """
        Settle pending combos whose legs have all finished with a result.
        Combos with any open leg are left untouched.
        """
        summary = ComboSummary()
        combos = await self.storage.list_pending_combo_bets(match_id=match_id)
        if not combos:
            return summary

        for combo in combos:
            if not combo.selections:
                logger.warning(f"Combo bet {combo.id} has no selections, leaving pending")
                summary.pending += 1
                continue
            if not combo.ready_to_settle:
                summary.pending += 1
                continue

            try:
                applied = await self._settle_combo(combo)
            except Exception as e:
                logger.error(f"Error resolving combo bet {combo.id}: {e}")
                summary.failed += 1
                continue

            if not applied:
                summary.skipped += 1
                continue

            summary.resolved += 1
            if combo.is_win:
                summary.won += 1
                summary.tokens_paid += combo.tokens_won
                summary.diamonds_paid += combo.diamonds_won
                await self._notify_win(combo)
            logger.info(f"Combo bet {combo.id} {'won' if combo.is_win else 'lost'}")

        return summary

    async def _settle_combo(self, combo: ComboBet) -> bool:
        is_win = combo.all_legs_won
        tokens_won = diamonds_won = 0
        if is_win:
            payout = compute_payout(combo.stake, combo.odds, combo.currency)
            tokens_won, diamonds_won = payout.tokens_won, payout.diamonds_won

        applied = await self.storage.update_combo_resolution(combo, is_win, tokens_won, diamonds_won)
        if applied:
            combo.is_win, combo.tokens_won, combo.diamonds_won = is_win, tokens_won, diamonds_won
        return applied

    async def _notify_win(self, bet, match_name: Optional[str] = None):
        if self.notify:
            await asyncio.to_thread(send_win_notification, bet, match_name)

    # --- Scheduled trigger ---

    async def run_settlement_pass(self, now: Optional[datetime] = None) -> SettlementReport:
        """Status transitions, then simple bets, then combos. Ends early with partial counts on store failure."""
        report = SettlementReport()

        transitions = await advance_match_statuses(self.storage, now)
        report.went_live = transitions.went_live
        report.finished = transitions.finished

        try:
            matches = await self.storage.list_finished_with_result(pending_only=True)
        except StorageError as e:
            logger.error(f"Failed to fetch finished matches: {e}")
            report.completed = False
            return report

        if matches:
            logger.info(f"Found {len(matches)} finished matches with pending bets")

        for match in matches:
            try:
                summary = await self.resolve_match_bets(match.id, match.result, match_name=match.name)
            except Exception as e:
                logger.error(f"Error resolving match {match.id}: {e}")
                report.failed += 1
                continue
            report.resolved += summary.processed
            report.failed += summary.failed
            report.won += summary.won
            report.tokens_paid += summary.tokens_paid
            report.diamonds_paid += summary.diamonds_paid

        try:
            combos = await self.resolve_combo_bets()
        except StorageError as e:
            logger.error(f"Failed to fetch combo bets: {e}")
            report.completed = False
            return report

        report.combo_resolved = combos.resolved
        report.combo_failed = combos.failed
        report.combo_pending = combos.pending
        report.won += combos.won
        report.tokens_paid += combos.tokens_paid
        report.diamonds_paid += combos.diamonds_paid

        logger.info(report.message)
        return report
