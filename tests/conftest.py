import pytest
import sqlite3
from datetime import datetime, timedelta

import pytz

from mockbet.models import Currency, Outcome


@pytest.fixture
def test_db(tmp_path):
    """Provide isolated test database with WAL mode enabled (production parity)."""
    db_path = tmp_path / "test_mockbet.db"

    conn = sqlite3.connect(db_path)
    conn.execute("PRAGMA journal_mode=WAL")
    conn.close()

    return str(db_path)


@pytest.fixture
def storage_layer(test_db):
    """Initialize storage with test DB."""
    from mockbet.storage import Storage
    storage = Storage(db_path=test_db)
    # Storage init automatically creates tables
    return storage


@pytest.fixture
def resolver(storage_layer):
    from mockbet.resolver import BetResolver
    return BetResolver(storage_layer, notify=False)


@pytest.fixture
def now():
    return datetime(2026, 10, 17, 18, 0, tzinfo=pytz.utc)


class Factory:
    """Async builders for rows the settlement code reads."""

    def __init__(self, storage, now):
        self.storage = storage
        self.now = now

    async def profile(self, username="player", tokens=1000, diamonds=0):
        return await self.storage.create_profile(username, tokens=tokens, diamonds=diamonds)

    async def match(self, odds=(2.0, 3.0, 4.0), kickoff_in=timedelta(hours=2), end_time=None, league="Ligue 1"):
        return await self.storage.create_match(
            home_team="PSG",
            away_team="Marseille",
            league=league,
            odds_home=odds[0],
            odds_draw=odds[1],
            odds_away=odds[2],
            start_time=self.now + kickoff_in,
            end_time=end_time,
        )

    async def bet(self, profile, match, stake, choice=Outcome.HOME, currency=Currency.TOKENS, odds=None):
        bet, _ = await self.storage.place_simple_bet(
            user_id=profile.id,
            match_id=match.id,
            stake=stake,
            currency=currency,
            choice=choice,
            odds=odds if odds is not None else match.odds_for(choice),
            day_start=self.now - timedelta(days=1),
            daily_limit=1000,
            created_at=self.now,
        )
        return bet

    async def combo(self, profile, legs, stake, currency=Currency.TOKENS):
        """legs: list of (match, choice, odds)."""
        from mockbet.models import ComboBet, ComboSelection
        from mockbet.payout import aggregate_odds
        selections = [ComboSelection(match_id=m.id, choice=c, odds=o) for m, c, o in legs]
        combo = ComboBet(
            id="",
            user_id=profile.id,
            stake=stake,
            currency=currency,
            odds=aggregate_odds(s.odds for s in selections),
            selections=selections,
            created_at=self.now,
        )
        combo, _ = await self.storage.place_combo_bet(combo, day_start=self.now - timedelta(days=1), daily_limit=1000)
        return combo


@pytest.fixture
def factory(storage_layer, now):
    return Factory(storage_layer, now)
