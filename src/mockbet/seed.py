import logging
from datetime import datetime, timedelta
from typing import List, Optional, Tuple

import pytz

from .models import Match, Profile
from .storage import Storage

logger = logging.getLogger(__name__)

# (home, away, league, odds_home, odds_draw, odds_away, hours until kickoff)
DEMO_FIXTURES = [
    ("PSG", "Marseille", "Ligue 1", 1.85, 3.40, 4.20, 2),
    ("Lyon", "Monaco", "Ligue 1", 2.30, 3.20, 3.10, 3),
    ("Manchester City", "Liverpool", "Premier League", 2.10, 3.50, 3.40, 4),
    ("Real Madrid", "Barcelona", "La Liga", 2.25, 3.30, 3.00, 5),
    ("Bayern Munich", "Borussia Dortmund", "Bundesliga", 1.95, 3.60, 3.80, 6),
    ("Juventus", "Inter Milan", "Serie A", 2.40, 3.10, 2.90, 7),
]

DEMO_USERS = ["alice", "bob"]

MATCH_DURATION = timedelta(minutes=110)


async def seed_demo_data(storage: Storage, now: Optional[datetime] = None) -> Tuple[List[Profile], List[Match]]:
    now = now or datetime.now(pytz.utc)

    profiles = [await storage.create_profile(username) for username in DEMO_USERS]

    matches = []
    for home, away, league, o_home, o_draw, o_away, hours in DEMO_FIXTURES:
        kickoff = now + timedelta(hours=hours)
        match = await storage.create_match(
            home_team=home,
            away_team=away,
            league=league,
            odds_home=o_home,
            odds_draw=o_draw,
            odds_away=o_away,
            start_time=kickoff,
            end_time=kickoff + MATCH_DURATION,
        )
        matches.append(match)

    logger.info(f"Seeded {len(profiles)} profiles and {len(matches)} matches.")
    return profiles, matches
