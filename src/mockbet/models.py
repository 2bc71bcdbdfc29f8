from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional, List, Union


class Outcome(str, Enum):
    HOME = "Home"
    DRAW = "Draw"
    AWAY = "Away"

    @classmethod
    def parse(cls, value) -> "Outcome":
        """Accept 'Home'/'Draw'/'Away' (any case) and the legacy 'A'/'B' labels."""
        if isinstance(value, Outcome):
            return value
        if not isinstance(value, str):
            raise ValueError(f"Invalid outcome: {value!r}")
        key = value.strip().lower()
        aliases = {
            "home": cls.HOME, "a": cls.HOME, "1": cls.HOME,
            "draw": cls.DRAW, "x": cls.DRAW,
            "away": cls.AWAY, "b": cls.AWAY, "2": cls.AWAY,
        }
        if key not in aliases:
            raise ValueError(f"Invalid outcome: {value!r}")
        return aliases[key]


class MatchStatus(str, Enum):
    UPCOMING = "upcoming"
    LIVE = "live"
    FINISHED = "finished"


class Currency(str, Enum):
    TOKENS = "tokens"
    DIAMONDS = "diamonds"

    @classmethod
    def parse(cls, value) -> "Currency":
        if isinstance(value, Currency):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            raise ValueError(f"Invalid currency: {value!r}") from None


@dataclass
class Match:
    id: str
    home_team: str
    away_team: str
    league: str
    odds_home: float
    odds_draw: float
    odds_away: float
    start_time: datetime
    status: MatchStatus = MatchStatus.UPCOMING
    result: Optional[Outcome] = None
    end_time: Optional[datetime] = None

    @property
    def name(self) -> str:
        return f"{self.home_team} vs {self.away_team}"

    def odds_for(self, outcome: Outcome) -> float:
        return {
            Outcome.HOME: self.odds_home,
            Outcome.DRAW: self.odds_draw,
            Outcome.AWAY: self.odds_away,
        }[outcome]

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "homeTeam": self.home_team,
            "awayTeam": self.away_team,
            "league": self.league,
            "oddsHome": self.odds_home,
            "oddsDraw": self.odds_draw,
            "oddsAway": self.odds_away,
            "status": self.status.value,
            "result": self.result.value if self.result else None,
            "startTime": self.start_time.isoformat(),
            "endTime": self.end_time.isoformat() if self.end_time else None,
        }


@dataclass
class Profile:
    id: str
    username: str
    tokens: float = 0
    diamonds: float = 0
    total_bets: int = 0
    won_bets: int = 0


@dataclass
class SimpleBet:
    id: str
    user_id: str
    match_id: str
    stake: float
    currency: Currency
    choice: Outcome
    odds: float  # Snapshot taken at placement, never re-read from the match
    is_win: Optional[bool] = None
    tokens_won: int = 0
    diamonds_won: int = 0
    created_at: Optional[datetime] = None

    @property
    def is_pending(self) -> bool:
        return self.is_win is None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "type": "simple",
            "userId": self.user_id,
            "matchId": self.match_id,
            "stake": self.stake,
            "currency": self.currency.value,
            "choice": self.choice.value,
            "odds": self.odds,
            "isWin": self.is_win,
            "tokensWon": self.tokens_won,
            "diamondsWon": self.diamonds_won,
            "createdAt": self.created_at.isoformat() if self.created_at else None,
        }


@dataclass
class ComboSelection:
    match_id: str
    choice: Outcome
    odds: float
    # Leg state joined from the match at read time
    match_status: Optional[MatchStatus] = None
    match_result: Optional[Outcome] = None

    @property
    def is_settled(self) -> bool:
        return self.match_status == MatchStatus.FINISHED and self.match_result is not None

    @property
    def is_won(self) -> bool:
        return self.is_settled and self.choice == self.match_result


@dataclass
class ComboBet:
    id: str
    user_id: str
    stake: float
    currency: Currency
    odds: float  # Product of all leg odds
    selections: List[ComboSelection] = field(default_factory=list)
    is_win: Optional[bool] = None
    tokens_won: int = 0
    diamonds_won: int = 0
    created_at: Optional[datetime] = None

    @property
    def is_pending(self) -> bool:
        return self.is_win is None

    @property
    def ready_to_settle(self) -> bool:
        return bool(self.selections) and all(s.is_settled for s in self.selections)

    @property
    def all_legs_won(self) -> bool:
        return bool(self.selections) and all(s.is_won for s in self.selections)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "type": "combo",
            "userId": self.user_id,
            "stake": self.stake,
            "currency": self.currency.value,
            "odds": self.odds,
            "selections": [
                {"matchId": s.match_id, "choice": s.choice.value, "odds": s.odds}
                for s in self.selections
            ],
            "isWin": self.is_win,
            "tokensWon": self.tokens_won,
            "diamondsWon": self.diamonds_won,
            "createdAt": self.created_at.isoformat() if self.created_at else None,
        }


Bet = Union[SimpleBet, ComboBet]


@dataclass(frozen=True)
class Payout:
    currency: Currency
    total_return: int
    profit: float
    bonus_diamonds: int

    @property
    def tokens_won(self) -> int:
        return self.total_return if self.currency == Currency.TOKENS else 0

    @property
    def diamonds_won(self) -> int:
        if self.currency == Currency.DIAMONDS:
            return self.total_return
        return self.bonus_diamonds


@dataclass
class SettlementSummary:
    """Outcome of settling the simple bets of one match."""
    match_id: str
    result: Optional[Outcome] = None
    won: int = 0
    lost: int = 0
    skipped: int = 0  # Already resolved by a concurrent settler
    failed: int = 0
    tokens_paid: int = 0
    diamonds_paid: int = 0
    combo_resolved: int = 0  # Combos completed by this match
    combo_failed: int = 0

    @property
    def processed(self) -> int:
        return self.won + self.lost

    @property
    def message(self) -> str:
        if self.processed == 0 and self.failed == 0:
            return "No bets to process"
        return f"Successfully processed {self.processed} bets, {self.failed} failures"

    def to_dict(self) -> dict:
        return {
            "matchId": self.match_id,
            "result": self.result.value if self.result else None,
            "processed": self.processed,
            "won": self.won,
            "lost": self.lost,
            "failed": self.failed,
            "tokensPaid": self.tokens_paid,
            "diamondsPaid": self.diamonds_paid,
            "comboResolved": self.combo_resolved,
            "comboFailed": self.combo_failed,
            "message": self.message,
        }


@dataclass
class SettlementReport:
    """Aggregate counts of one full scheduled pass."""
    resolved: int = 0
    combo_resolved: int = 0
    failed: int = 0
    combo_failed: int = 0
    combo_pending: int = 0
    went_live: int = 0
    finished: int = 0
    won: int = 0
    tokens_paid: int = 0
    diamonds_paid: int = 0
    completed: bool = True

    @property
    def message(self) -> str:
        return (
            f"Resolved {self.resolved} simple bets and {self.combo_resolved} combo bets, "
            f"{self.failed + self.combo_failed} failures"
        )

    def to_dict(self) -> dict:
        return {
            "ok": self.completed,
            "resolved": self.resolved,
            "comboResolved": self.combo_resolved,
            "failed": self.failed,
            "comboFailed": self.combo_failed,
            "comboPending": self.combo_pending,
            "live": self.went_live,
            "finished": self.finished,
            "message": self.message,
        }
