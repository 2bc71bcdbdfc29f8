"""
Payout rules shared by every settlement path.

All arithmetic goes through Decimal so that e.g. 10 x 2.3 floors to 23
and not to 22 (binary float gives 22.999...). Returns are floored.
"""
import random
from decimal import Decimal, ROUND_FLOOR
from typing import Dict, Iterable

from .config import DIAMOND_BONUS_RATE
from .exceptions import ValidationError
from .models import Currency, Match, Outcome, Payout


def _dec(x) -> Decimal:
    return Decimal(str(x))


def _floor(x: Decimal) -> int:
    return int(x.to_integral_value(rounding=ROUND_FLOOR))


def compute_payout(stake: float, odds: float, currency: Currency,
                   bonus_rate: float = DIAMOND_BONUS_RATE) -> Payout:
    """
    Map a winning (stake, odds, currency) to its credits.

    Token wins return floor(stake * odds) tokens plus a diamond bonus of
    floor(profit * bonus_rate). Diamond wins return floor(stake * odds)
    diamonds and no bonus.
    """
    if stake is None or stake <= 0:
        raise ValidationError(f"Stake must be positive, got {stake}")
    if odds is None or odds <= 0:
        raise ValidationError(f"Odds must be positive, got {odds}")

    currency = Currency.parse(currency)
    total_return = _floor(_dec(stake) * _dec(odds))
    profit = _dec(total_return) - _dec(stake)

    bonus = 0
    if currency == Currency.TOKENS:
        bonus = max(0, _floor(profit * _dec(bonus_rate)))

    return Payout(
        currency=currency,
        total_return=total_return,
        profit=float(profit),
        bonus_diamonds=bonus,
    )


def aggregate_odds(leg_odds: Iterable[float]) -> float:
    """Combo odds: exact product of the leg odds."""
    total = Decimal(1)
    count = 0
    for o in leg_odds:
        if o is None or o <= 0:
            raise ValidationError(f"Leg odds must be positive, got {o}")
        total *= _dec(o)
        count += 1
    if count == 0:
        raise ValidationError("Cannot aggregate odds of an empty combo")
    return float(total)


def implied_probabilities(match: Match) -> Dict[Outcome, float]:
    """P(outcome) proportional to 1/odds, normalized to sum to 1."""
    inverse = {o: 1.0 / match.odds_for(o) for o in Outcome}
    total = sum(inverse.values())
    return {o: v / total for o, v in inverse.items()}


def simulate_outcome(match: Match, rng: random.Random = None) -> Outcome:
    rng = rng or random.Random()
    probs = implied_probabilities(match)
    roll = rng.random()
    cumulative = 0.0
    for outcome in (Outcome.HOME, Outcome.DRAW, Outcome.AWAY):
        cumulative += probs[outcome]
        if roll < cumulative:
            return outcome
    # Rounding left roll just above the last boundary
    return Outcome.AWAY
