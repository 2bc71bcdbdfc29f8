import sqlite3
import logging
import asyncio
import uuid
from contextlib import contextmanager
from datetime import datetime
from typing import List, Optional, Tuple

import pytz

from .config import STARTING_TOKENS, STARTING_DIAMONDS
from .exceptions import (
    BetError,
    DailyLimitReachedError,
    InsufficientBalanceError,
    ProfileNotFoundError,
    StorageError,
    ValidationError,
)
from .models import (
    ComboBet,
    ComboSelection,
    Currency,
    Match,
    MatchStatus,
    Outcome,
    Profile,
    SimpleBet,
)

logger = logging.getLogger(__name__)


def to_timestamp(dt: datetime) -> int:
    """Epoch seconds; naive datetimes are taken as UTC."""
    if dt.tzinfo is None:
        dt = pytz.utc.localize(dt)
    return int(dt.timestamp())


def from_timestamp(ts: Optional[int]) -> Optional[datetime]:
    if ts is None:
        return None
    return datetime.fromtimestamp(ts, tz=pytz.utc)


def _new_id() -> str:
    return uuid.uuid4().hex


class Storage:
    def __init__(self, db_path: str = "mockbet.db"):
        self.db_path = db_path
        self._init_db()

    def _connect(self):
        conn = sqlite3.connect(self.db_path, timeout=30.0, isolation_level=None)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA journal_mode=WAL;")
        conn.execute("PRAGMA synchronous=NORMAL;")
        conn.execute("PRAGMA foreign_keys=ON;")
        return conn

    @contextmanager
    def _get_connection(self):
        """Autocommit connection for reads and single-statement writes."""
        conn = self._connect()
        try:
            yield conn
        finally:
            conn.close()

    @contextmanager
    def _transaction(self):
        """Write transaction taken with BEGIN IMMEDIATE; rolled back on any error."""
        conn = self._connect()
        try:
            conn.execute("BEGIN IMMEDIATE")
            try:
                yield conn
            except BaseException:
                conn.execute("ROLLBACK")
                raise
            conn.execute("COMMIT")
        finally:
            conn.close()

    def _init_db(self):
        try:
            with self._get_connection() as conn:
                conn.executescript("""
                    CREATE TABLE IF NOT EXISTS profiles (
                        id TEXT PRIMARY KEY,
                        username TEXT NOT NULL,
                        tokens REAL NOT NULL DEFAULT 0 CHECK (tokens >= 0),
                        diamonds REAL NOT NULL DEFAULT 0 CHECK (diamonds >= 0),
                        total_bets INTEGER NOT NULL DEFAULT 0,
                        won_bets INTEGER NOT NULL DEFAULT 0,
                        created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
                    );

                    CREATE TABLE IF NOT EXISTS matches (
                        id TEXT PRIMARY KEY,
                        home_team TEXT NOT NULL,
                        away_team TEXT NOT NULL,
                        league TEXT NOT NULL,
                        odds_home REAL NOT NULL CHECK (odds_home > 0),
                        odds_draw REAL NOT NULL CHECK (odds_draw > 0),
                        odds_away REAL NOT NULL CHECK (odds_away > 0),
                        status TEXT NOT NULL DEFAULT 'upcoming'
                            CHECK (status IN ('upcoming', 'live', 'finished')),
                        result TEXT CHECK (result IS NULL OR status = 'finished'),
                        start_time INTEGER NOT NULL,
                        end_time INTEGER
                    );
                    CREATE INDEX IF NOT EXISTS idx_matches_status ON matches(status, start_time);

                    CREATE TABLE IF NOT EXISTS bets (
                        id TEXT PRIMARY KEY,
                        user_id TEXT NOT NULL REFERENCES profiles(id),
                        match_id TEXT NOT NULL REFERENCES matches(id),
                        stake REAL NOT NULL CHECK (stake > 0),
                        currency TEXT NOT NULL,
                        choice TEXT NOT NULL,
                        odds REAL NOT NULL,
                        is_win INTEGER,
                        tokens_won INTEGER NOT NULL DEFAULT 0,
                        diamonds_won INTEGER NOT NULL DEFAULT 0,
                        created_at INTEGER NOT NULL,
                        resolved_at INTEGER
                    );
                    CREATE INDEX IF NOT EXISTS idx_bets_match_pending ON bets(match_id, is_win);
                    CREATE INDEX IF NOT EXISTS idx_bets_user_created ON bets(user_id, created_at);

                    CREATE TABLE IF NOT EXISTS combo_bets (
                        id TEXT PRIMARY KEY,
                        user_id TEXT NOT NULL REFERENCES profiles(id),
                        stake REAL NOT NULL CHECK (stake > 0),
                        currency TEXT NOT NULL,
                        total_odds REAL NOT NULL,
                        is_win INTEGER,
                        tokens_won INTEGER NOT NULL DEFAULT 0,
                        diamonds_won INTEGER NOT NULL DEFAULT 0,
                        created_at INTEGER NOT NULL,
                        resolved_at INTEGER
                    );
                    CREATE INDEX IF NOT EXISTS idx_combo_pending ON combo_bets(is_win);
                    CREATE INDEX IF NOT EXISTS idx_combo_user_created ON combo_bets(user_id, created_at);

                    CREATE TABLE IF NOT EXISTS combo_bet_selections (
                        combo_bet_id TEXT NOT NULL REFERENCES combo_bets(id),
                        match_id TEXT NOT NULL REFERENCES matches(id),
                        choice TEXT NOT NULL,
                        odds REAL NOT NULL,
                        PRIMARY KEY (combo_bet_id, match_id)
                    ) WITHOUT ROWID;
                    CREATE INDEX IF NOT EXISTS idx_selections_match ON combo_bet_selections(match_id);
                """)
        except sqlite3.Error as e:
            logger.error(f"Failed to init DB: {e}")
            raise StorageError(f"Failed to init DB: {e}") from e

    # --- Row mapping ---

    @staticmethod
    def _row_to_profile(row) -> Profile:
        return Profile(
            id=row["id"],
            username=row["username"],
            tokens=row["tokens"],
            diamonds=row["diamonds"],
            total_bets=row["total_bets"],
            won_bets=row["won_bets"],
        )

    @staticmethod
    def _row_to_match(row) -> Match:
        return Match(
            id=row["id"],
            home_team=row["home_team"],
            away_team=row["away_team"],
            league=row["league"],
            odds_home=row["odds_home"],
            odds_draw=row["odds_draw"],
            odds_away=row["odds_away"],
            status=MatchStatus(row["status"]),
            result=Outcome(row["result"]) if row["result"] else None,
            start_time=from_timestamp(row["start_time"]),
            end_time=from_timestamp(row["end_time"]),
        )

    @staticmethod
    def _is_win(value) -> Optional[bool]:
        return None if value is None else bool(value)

    def _row_to_bet(self, row) -> SimpleBet:
        return SimpleBet(
            id=row["id"],
            user_id=row["user_id"],
            match_id=row["match_id"],
            stake=row["stake"],
            currency=Currency(row["currency"]),
            choice=Outcome(row["choice"]),
            odds=row["odds"],
            is_win=self._is_win(row["is_win"]),
            tokens_won=row["tokens_won"],
            diamonds_won=row["diamonds_won"],
            created_at=from_timestamp(row["created_at"]),
        )

    def _row_to_combo(self, row, selections: List[ComboSelection]) -> ComboBet:
        return ComboBet(
            id=row["id"],
            user_id=row["user_id"],
            stake=row["stake"],
            currency=Currency(row["currency"]),
            odds=row["total_odds"],
            selections=selections,
            is_win=self._is_win(row["is_win"]),
            tokens_won=row["tokens_won"],
            diamonds_won=row["diamonds_won"],
            created_at=from_timestamp(row["created_at"]),
        )

    # --- Profile Store ---

    async def create_profile(self, username: str, tokens: float = STARTING_TOKENS,
                             diamonds: float = STARTING_DIAMONDS,
                             profile_id: Optional[str] = None) -> Profile:
        return await asyncio.to_thread(self._create_profile_sync, username, tokens, diamonds, profile_id)

    def _create_profile_sync(self, username, tokens, diamonds, profile_id) -> Profile:
        profile = Profile(id=profile_id or _new_id(), username=username, tokens=tokens, diamonds=diamonds)
        try:
            with self._get_connection() as conn:
                conn.execute(
                    "INSERT INTO profiles (id, username, tokens, diamonds) VALUES (?, ?, ?, ?)",
                    (profile.id, profile.username, profile.tokens, profile.diamonds)
                )
            return profile
        except sqlite3.Error as e:
            logger.error(f"Error creating profile {username}: {e}")
            raise StorageError(f"Error creating profile: {e}") from e

    async def get_profile(self, user_id: str) -> Optional[Profile]:
        return await asyncio.to_thread(self._get_profile_sync, user_id)

    def _get_profile_sync(self, user_id: str) -> Optional[Profile]:
        try:
            with self._get_connection() as conn:
                row = conn.execute("SELECT * FROM profiles WHERE id = ?", (user_id,)).fetchone()
                return self._row_to_profile(row) if row else None
        except sqlite3.Error as e:
            logger.error(f"Error getting profile {user_id}: {e}")
            raise StorageError(f"Error getting profile: {e}") from e

    async def credit_balance(self, user_id: str, tokens_delta: float, diamonds_delta: float):
        await asyncio.to_thread(self._credit_balance_sync, user_id, tokens_delta, diamonds_delta)

    def _credit_balance_sync(self, user_id: str, tokens_delta: float, diamonds_delta: float):
        try:
            with self._transaction() as conn:
                self._apply_credit(conn, user_id, tokens_delta, diamonds_delta, won=False)
        except BetError:
            raise
        except sqlite3.Error as e:
            logger.error(f"Error crediting balance for {user_id}: {e}")
            raise StorageError(f"Error crediting balance: {e}") from e

    async def increment_won_bets(self, user_id: str):
        await asyncio.to_thread(self._increment_won_bets_sync, user_id)

    def _increment_won_bets_sync(self, user_id: str):
        try:
            with self._transaction() as conn:
                self._apply_credit(conn, user_id, 0, 0, won=True)
        except BetError:
            raise
        except sqlite3.Error as e:
            logger.error(f"Error incrementing won bets for {user_id}: {e}")
            raise StorageError(f"Error incrementing won bets: {e}") from e

    @staticmethod
    def _apply_credit(conn, user_id: str, tokens_delta: float, diamonds_delta: float, won: bool):
        """Atomic in-place increment. Negative deltas floor the balance at 0."""
        cursor = conn.execute("""
            UPDATE profiles SET
                tokens = MAX(0, tokens + ?),
                diamonds = MAX(0, diamonds + ?),
                won_bets = won_bets + ?
            WHERE id = ?
        """, (tokens_delta, diamonds_delta, 1 if won else 0, user_id))
        if cursor.rowcount == 0:
            raise ProfileNotFoundError(f"Profile {user_id} not found")

    # --- Match Store ---

    async def create_match(self, home_team: str, away_team: str, league: str,
                           odds_home: float, odds_draw: float, odds_away: float,
                           start_time: datetime, end_time: Optional[datetime] = None,
                           match_id: Optional[str] = None) -> Match:
        if min(odds_home, odds_draw, odds_away) <= 0:
            raise ValidationError(f"Odds must be positive for {home_team} vs {away_team}")
        match = Match(
            id=match_id or _new_id(),
            home_team=home_team,
            away_team=away_team,
            league=league,
            odds_home=odds_home,
            odds_draw=odds_draw,
            odds_away=odds_away,
            start_time=start_time,
            end_time=end_time,
        )
        await asyncio.to_thread(self._insert_match_sync, match)
        return match

    def _insert_match_sync(self, match: Match):
        try:
            with self._get_connection() as conn:
                conn.execute("""
                    INSERT INTO matches (id, home_team, away_team, league, odds_home, odds_draw,
                                         odds_away, status, result, start_time, end_time)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """, (
                    match.id, match.home_team, match.away_team, match.league,
                    match.odds_home, match.odds_draw, match.odds_away,
                    match.status.value, match.result.value if match.result else None,
                    to_timestamp(match.start_time),
                    to_timestamp(match.end_time) if match.end_time else None,
                ))
        except sqlite3.Error as e:
            logger.error(f"Error inserting match {match.name}: {e}")
            raise StorageError(f"Error inserting match: {e}") from e

    async def find_match(self, match_id: str) -> Optional[Match]:
        return await asyncio.to_thread(self._find_match_sync, match_id)

    def _find_match_sync(self, match_id: str) -> Optional[Match]:
        try:
            with self._get_connection() as conn:
                row = conn.execute("SELECT * FROM matches WHERE id = ?", (match_id,)).fetchone()
                return self._row_to_match(row) if row else None
        except sqlite3.Error as e:
            logger.error(f"Error finding match {match_id}: {e}")
            raise StorageError(f"Error finding match: {e}") from e

    async def list_matches(self, status: Optional[MatchStatus] = None,
                           league: Optional[str] = None) -> List[Match]:
        return await asyncio.to_thread(self._list_matches_sync, status, league)

    def _list_matches_sync(self, status, league) -> List[Match]:
        query = "SELECT * FROM matches"
        clauses, params = [], []
        if status:
            clauses.append("status = ?")
            params.append(MatchStatus(status).value)
        if league:
            clauses.append("league = ?")
            params.append(league)
        if clauses:
            query += " WHERE " + " AND ".join(clauses)
        query += " ORDER BY start_time ASC"
        try:
            with self._get_connection() as conn:
                return [self._row_to_match(r) for r in conn.execute(query, params).fetchall()]
        except sqlite3.Error as e:
            logger.error(f"Error listing matches: {e}")
            raise StorageError(f"Error listing matches: {e}") from e

    async def list_finished_with_result(self, pending_only: bool = False) -> List[Match]:
        """Settled matches; with pending_only, just those still holding unresolved simple bets."""
        return await asyncio.to_thread(self._list_finished_with_result_sync, pending_only)

    def _list_finished_with_result_sync(self, pending_only: bool) -> List[Match]:
        query = "SELECT * FROM matches m WHERE m.status = 'finished' AND m.result IS NOT NULL"
        if pending_only:
            query += " AND EXISTS (SELECT 1 FROM bets b WHERE b.match_id = m.id AND b.is_win IS NULL)"
        query += " ORDER BY m.start_time ASC"
        try:
            with self._get_connection() as conn:
                cursor = conn.execute(query)
                return [self._row_to_match(r) for r in cursor.fetchall()]
        except sqlite3.Error as e:
            logger.error(f"Error listing finished matches: {e}")
            raise StorageError(f"Error listing finished matches: {e}") from e

    async def mark_started_live(self, now: datetime) -> int:
        return await asyncio.to_thread(self._mark_started_live_sync, to_timestamp(now))

    def _mark_started_live_sync(self, now_ts: int) -> int:
        try:
            with self._get_connection() as conn:
                cursor = conn.execute(
                    "UPDATE matches SET status = 'live' WHERE status = 'upcoming' AND start_time <= ?",
                    (now_ts,)
                )
                return cursor.rowcount
        except sqlite3.Error as e:
            logger.error(f"Error marking matches live: {e}")
            raise StorageError(f"Error marking matches live: {e}") from e

    async def mark_ended_finished(self, now: datetime, started_before: datetime) -> int:
        """
        Finish every upcoming/live match whose end_time has passed, or which
        has no end_time and kicked off before `started_before`.
        """
        return await asyncio.to_thread(
            self._mark_ended_finished_sync, to_timestamp(now), to_timestamp(started_before)
        )

    def _mark_ended_finished_sync(self, now_ts: int, cutoff_ts: int) -> int:
        try:
            with self._get_connection() as conn:
                cursor = conn.execute("""
                    UPDATE matches SET status = 'finished'
                    WHERE status IN ('upcoming', 'live')
                      AND (
                        (end_time IS NOT NULL AND end_time <= ?)
                        OR (end_time IS NULL AND start_time <= ?)
                      )
                """, (now_ts, cutoff_ts))
                return cursor.rowcount
        except sqlite3.Error as e:
            logger.error(f"Error marking matches finished: {e}")
            raise StorageError(f"Error marking matches finished: {e}") from e

    async def record_match_result(self, match_id: str, result: Outcome) -> bool:
        """Set status=finished and result, only if no result was recorded yet."""
        return await asyncio.to_thread(self._record_match_result_sync, match_id, Outcome(result))

    def _record_match_result_sync(self, match_id: str, result: Outcome) -> bool:
        try:
            with self._get_connection() as conn:
                cursor = conn.execute(
                    "UPDATE matches SET status = 'finished', result = ? WHERE id = ? AND result IS NULL",
                    (result.value, match_id)
                )
                return cursor.rowcount == 1
        except sqlite3.Error as e:
            logger.error(f"Error recording result for match {match_id}: {e}")
            raise StorageError(f"Error recording match result: {e}") from e

    # --- Bet Store ---

    async def get_bet(self, bet_id: str) -> Optional[SimpleBet]:
        return await asyncio.to_thread(self._get_bet_sync, bet_id)

    def _get_bet_sync(self, bet_id: str) -> Optional[SimpleBet]:
        try:
            with self._get_connection() as conn:
                row = conn.execute("SELECT * FROM bets WHERE id = ?", (bet_id,)).fetchone()
                return self._row_to_bet(row) if row else None
        except sqlite3.Error as e:
            logger.error(f"Error getting bet {bet_id}: {e}")
            raise StorageError(f"Error getting bet: {e}") from e

    async def list_pending_bets(self, match_id: str) -> List[SimpleBet]:
        return await asyncio.to_thread(self._list_pending_bets_sync, match_id)

    def _list_pending_bets_sync(self, match_id: str) -> List[SimpleBet]:
        try:
            with self._get_connection() as conn:
                cursor = conn.execute(
                    "SELECT * FROM bets WHERE match_id = ? AND is_win IS NULL ORDER BY created_at, id",
                    (match_id,)
                )
                return [self._row_to_bet(r) for r in cursor.fetchall()]
        except sqlite3.Error as e:
            logger.error(f"Error listing pending bets for match {match_id}: {e}")
            raise StorageError(f"Error listing pending bets: {e}") from e

    async def list_user_bets(self, user_id: str, state: Optional[str] = None) -> List[SimpleBet]:
        return await asyncio.to_thread(self._list_user_bets_sync, user_id, state)

    def _list_user_bets_sync(self, user_id: str, state: Optional[str]) -> List[SimpleBet]:
        query = "SELECT * FROM bets WHERE user_id = ?"
        if state == "active":
            query += " AND is_win IS NULL"
        elif state == "history":
            query += " AND is_win IS NOT NULL"
        query += " ORDER BY created_at DESC"
        try:
            with self._get_connection() as conn:
                return [self._row_to_bet(r) for r in conn.execute(query, (user_id,)).fetchall()]
        except sqlite3.Error as e:
            logger.error(f"Error listing bets for user {user_id}: {e}")
            raise StorageError(f"Error listing user bets: {e}") from e

    async def update_bet_resolution(self, bet: SimpleBet, is_win: bool,
                                    tokens_won: int = 0, diamonds_won: int = 0) -> bool:
        """
        Resolve a pending bet and credit its winnings in one transaction.

        Returns False (and credits nothing) when the bet was already
        resolved by someone else.
        """
        return await asyncio.to_thread(
            self._resolve_sync, "bets", bet.id, bet.user_id, is_win, tokens_won, diamonds_won
        )

    def _resolve_sync(self, table: str, bet_id: str, user_id: str, is_win: bool,
                      tokens_won: int, diamonds_won: int) -> bool:
        now_ts = to_timestamp(datetime.now(pytz.utc))
        try:
            with self._transaction() as conn:
                cursor = conn.execute(f"""
                    UPDATE {table} SET
                        is_win = ?,
                        tokens_won = ?,
                        diamonds_won = ?,
                        resolved_at = ?
                    WHERE id = ? AND is_win IS NULL
                """, (1 if is_win else 0, tokens_won, diamonds_won, now_ts, bet_id))
                if cursor.rowcount == 0:
                    return False
                if is_win:
                    self._apply_credit(conn, user_id, tokens_won, diamonds_won, won=True)
                return True
        except BetError:
            raise
        except sqlite3.Error as e:
            logger.error(f"Error resolving {table} row {bet_id}: {e}")
            raise StorageError(f"Error resolving bet: {e}") from e

    async def place_simple_bet(self, user_id: str, match_id: str, stake: float,
                               currency: Currency, choice: Outcome, odds: float,
                               day_start: datetime, daily_limit: int,
                               created_at: Optional[datetime] = None) -> Tuple[SimpleBet, float]:
        """Debit the stake, insert the bet and bump total_bets atomically."""
        bet = SimpleBet(
            id=_new_id(),
            user_id=user_id,
            match_id=match_id,
            stake=stake,
            currency=Currency(currency),
            choice=Outcome(choice),
            odds=odds,
            created_at=created_at or datetime.now(pytz.utc),
        )
        new_balance = await asyncio.to_thread(
            self._place_sync, bet, None, to_timestamp(day_start), daily_limit
        )
        return bet, new_balance

    async def place_combo_bet(self, combo: ComboBet, day_start: datetime,
                              daily_limit: int) -> Tuple[ComboBet, float]:
        combo.id = combo.id or _new_id()
        combo.created_at = combo.created_at or datetime.now(pytz.utc)
        new_balance = await asyncio.to_thread(
            self._place_sync, None, combo, to_timestamp(day_start), daily_limit
        )
        return combo, new_balance

    def _place_sync(self, bet: Optional[SimpleBet], combo: Optional[ComboBet],
                    day_start_ts: int, daily_limit: int) -> float:
        placed = bet or combo
        column = "tokens" if placed.currency == Currency.TOKENS else "diamonds"
        try:
            with self._transaction() as conn:
                placed_today = self._count_bets_since(conn, placed.user_id, day_start_ts)
                if placed_today >= daily_limit:
                    raise DailyLimitReachedError(
                        f"Daily limit reached: only {daily_limit} bets per day are allowed"
                    )

                cursor = conn.execute(
                    f"UPDATE profiles SET {column} = {column} - ?, total_bets = total_bets + 1 "
                    f"WHERE id = ? AND {column} >= ?",
                    (placed.stake, placed.user_id, placed.stake)
                )
                if cursor.rowcount == 0:
                    exists = conn.execute("SELECT 1 FROM profiles WHERE id = ?", (placed.user_id,)).fetchone()
                    if not exists:
                        raise ProfileNotFoundError(f"Profile {placed.user_id} not found")
                    raise InsufficientBalanceError(f"Insufficient {column}")

                created_ts = to_timestamp(placed.created_at)
                if bet:
                    conn.execute("""
                        INSERT INTO bets (id, user_id, match_id, stake, currency, choice, odds, created_at)
                        VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                    """, (bet.id, bet.user_id, bet.match_id, bet.stake, bet.currency.value,
                          bet.choice.value, bet.odds, created_ts))
                else:
                    conn.execute("""
                        INSERT INTO combo_bets (id, user_id, stake, currency, total_odds, created_at)
                        VALUES (?, ?, ?, ?, ?, ?)
                    """, (combo.id, combo.user_id, combo.stake, combo.currency.value,
                          combo.odds, created_ts))
                    conn.executemany("""
                        INSERT INTO combo_bet_selections (combo_bet_id, match_id, choice, odds)
                        VALUES (?, ?, ?, ?)
                    """, [(combo.id, s.match_id, s.choice.value, s.odds) for s in combo.selections])

                row = conn.execute(f"SELECT {column} FROM profiles WHERE id = ?", (placed.user_id,)).fetchone()
                return row[0]
        except BetError:
            raise
        except sqlite3.Error as e:
            logger.error(f"Error placing bet for {placed.user_id}: {e}")
            raise StorageError(f"Error placing bet: {e}") from e

    @staticmethod
    def _count_bets_since(conn, user_id: str, since_ts: int) -> int:
        row = conn.execute("""
            SELECT
                (SELECT COUNT(*) FROM bets WHERE user_id = ? AND created_at >= ?) +
                (SELECT COUNT(*) FROM combo_bets WHERE user_id = ? AND created_at >= ?)
        """, (user_id, since_ts, user_id, since_ts)).fetchone()
        return row[0]

    # --- Combo Store ---

    async def get_combo_bet(self, combo_id: str) -> Optional[ComboBet]:
        combos = await asyncio.to_thread(self._list_combos_sync, "c.id = ?", (combo_id,))
        return combos[0] if combos else None

    async def list_pending_combo_bets(self, match_id: Optional[str] = None) -> List[ComboBet]:
        """Pending combos with each leg's current match status/result joined in."""
        if match_id:
            where = ("c.is_win IS NULL AND c.id IN "
                     "(SELECT combo_bet_id FROM combo_bet_selections WHERE match_id = ?)")
            return await asyncio.to_thread(self._list_combos_sync, where, (match_id,))
        return await asyncio.to_thread(self._list_combos_sync, "c.is_win IS NULL", ())

    def _list_combos_sync(self, where: str, params: tuple) -> List[ComboBet]:
        try:
            with self._get_connection() as conn:
                combo_rows = conn.execute(
                    f"SELECT c.* FROM combo_bets c WHERE {where} ORDER BY c.created_at, c.id", params
                ).fetchall()
                combos = []
                for row in combo_rows:
                    legs = conn.execute("""
                        SELECT s.match_id, s.choice, s.odds, m.status, m.result
                        FROM combo_bet_selections s
                        LEFT JOIN matches m ON m.id = s.match_id
                        WHERE s.combo_bet_id = ?
                        ORDER BY s.match_id
                    """, (row["id"],)).fetchall()
                    selections = [
                        ComboSelection(
                            match_id=leg["match_id"],
                            choice=Outcome(leg["choice"]),
                            odds=leg["odds"],
                            match_status=MatchStatus(leg["status"]) if leg["status"] else None,
                            match_result=Outcome(leg["result"]) if leg["result"] else None,
                        )
                        for leg in legs
                    ]
                    combos.append(self._row_to_combo(row, selections))
                return combos
        except sqlite3.Error as e:
            logger.error(f"Error listing combo bets: {e}")
            raise StorageError(f"Error listing combo bets: {e}") from e

    async def update_combo_resolution(self, combo: ComboBet, is_win: bool,
                                      tokens_won: int = 0, diamonds_won: int = 0) -> bool:
        return await asyncio.to_thread(
            self._resolve_sync, "combo_bets", combo.id, combo.user_id, is_win, tokens_won, diamonds_won
        )
