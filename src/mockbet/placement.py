import logging
from datetime import datetime
from typing import Iterable, List, Optional, Tuple

import pytz

from .config import DAILY_BET_LIMIT, MIN_COMBO_SELECTIONS
from .exceptions import BettingClosedError, MatchNotFoundError, ValidationError
from .models import ComboBet, ComboSelection, Currency, Match, MatchStatus, Outcome, SimpleBet
from .payout import aggregate_odds
from .storage import Storage

logger = logging.getLogger(__name__)


def _utc_now(now: Optional[datetime]) -> datetime:
    now = now or datetime.now(pytz.utc)
    if now.tzinfo is None:
        now = pytz.utc.localize(now)
    return now


def _start_of_day(now: datetime) -> datetime:
    return now.astimezone(pytz.utc).replace(hour=0, minute=0, second=0, microsecond=0)


def _is_id(value) -> bool:
    return isinstance(value, str) and bool(value)


def _parse_amount(amount) -> float:
    try:
        value = float(amount)
    except (TypeError, ValueError):
        raise ValidationError("Bet amount must be a number") from None
    if value <= 0:
        raise ValidationError("Bet amount must be greater than 0")
    return value


def _parse_choice(choice) -> Outcome:
    try:
        return Outcome.parse(choice)
    except ValueError:
        raise ValidationError("Invalid choice. Must be Home, Draw, or Away") from None


def _parse_currency(currency) -> Currency:
    try:
        return Currency.parse(currency)
    except ValueError:
        raise ValidationError("Invalid stake type. Must be tokens or diamonds") from None


def _ensure_open(match: Match, now: datetime):
    if match.status != MatchStatus.UPCOMING or match.start_time <= now:
        raise BettingClosedError(f"Cannot bet on {match.name}. It has already started or finished.")


class BetPlacement:
    def __init__(self, storage: Storage, daily_limit: int = DAILY_BET_LIMIT):
        self.storage = storage
        self.daily_limit = daily_limit

    async def place_bet(self, user_id: str, match_id: str, amount, choice,
                        currency=Currency.TOKENS, now: Optional[datetime] = None) -> Tuple[SimpleBet, float]:
        """Place a single bet; returns the bet and the new balance of the staked currency."""
        if not _is_id(user_id) or not _is_id(match_id):
            raise ValidationError("User ID and match ID are required")
        stake = _parse_amount(amount)
        outcome = _parse_choice(choice)
        currency = _parse_currency(currency)
        now = _utc_now(now)

        match = await self.storage.find_match(match_id)
        if not match:
            raise MatchNotFoundError(f"Match {match_id} not found")
        _ensure_open(match, now)

        bet, new_balance = await self.storage.place_simple_bet(
            user_id=user_id,
            match_id=match_id,
            stake=stake,
            currency=currency,
            choice=outcome,
            odds=match.odds_for(outcome),
            day_start=_start_of_day(now),
            daily_limit=self.daily_limit,
            created_at=now,
        )
        logger.info(f"User {user_id} bet {stake:g} {currency.value} on {match.name} ({outcome.value} @ {bet.odds})")
        return bet, new_balance

    async def place_combo_bet(self, user_id: str, selections: Iterable[dict], amount,
                              currency=Currency.TOKENS, now: Optional[datetime] = None) -> Tuple[ComboBet, float]:
        """
        Place a parlay. `selections` is a list of {"matchId", "choice"}
        dicts; each leg snapshots the current odds of its match.
        """
        if not _is_id(user_id):
            raise ValidationError("User ID is required")
        stake = _parse_amount(amount)
        currency = _parse_currency(currency)
        now = _utc_now(now)

        selections = list(selections or [])
        if len(selections) < MIN_COMBO_SELECTIONS:
            raise ValidationError(f"A combo bet needs at least {MIN_COMBO_SELECTIONS} selections")

        legs: List[ComboSelection] = []
        seen = set()
        for sel in selections:
            if not isinstance(sel, dict):
                raise ValidationError("Every selection must be an object with matchId and choice")
            match_id = sel.get("matchId") or sel.get("match_id")
            if not _is_id(match_id):
                raise ValidationError("Every selection needs a match ID")
            if match_id in seen:
                raise ValidationError("A combo bet cannot contain the same match twice")
            seen.add(match_id)

            outcome = _parse_choice(sel.get("choice"))
            match = await self.storage.find_match(match_id)
            if not match:
                raise MatchNotFoundError(f"Match {match_id} not found")
            _ensure_open(match, now)
            legs.append(ComboSelection(match_id=match_id, choice=outcome, odds=match.odds_for(outcome)))

        combo = ComboBet(
            id="",
            user_id=user_id,
            stake=stake,
            currency=currency,
            odds=aggregate_odds(leg.odds for leg in legs),
            selections=legs,
            created_at=now,
        )
        combo, new_balance = await self.storage.place_combo_bet(
            combo, day_start=_start_of_day(now), daily_limit=self.daily_limit
        )
        logger.info(f"User {user_id} placed combo {combo.id}: {len(legs)} legs @ {combo.odds:.2f}")
        return combo, new_balance
