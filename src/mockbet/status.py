"""
Match lifecycle: upcoming -> live -> finished.

A match goes live once its kickoff has passed. It finishes once its
explicit end_time has passed; matches without an end_time finish
FINISH_GRACE_HOURS after kickoff. No result is assigned here.
"""
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

import pytz

from .config import FINISH_GRACE_HOURS
from .exceptions import StorageError
from .storage import Storage

logger = logging.getLogger(__name__)


@dataclass
class TransitionCounts:
    went_live: int = 0
    finished: int = 0


async def advance_match_statuses(storage: Storage, now: Optional[datetime] = None,
                                 grace_hours: int = FINISH_GRACE_HOURS) -> TransitionCounts:
    """
    Apply both lifecycle rules once. Safe to repeat: a second call with
    the same `now` changes nothing. A failing rule is logged and does not
    stop the other one.
    """
    now = now or datetime.now(pytz.utc)
    counts = TransitionCounts()

    try:
        counts.went_live = await storage.mark_started_live(now)
    except StorageError as e:
        logger.error(f"Live transition failed: {e}")

    try:
        counts.finished = await storage.mark_ended_finished(now, now - timedelta(hours=grace_hours))
    except StorageError as e:
        logger.error(f"Finished transition failed: {e}")

    if counts.went_live or counts.finished:
        logger.info(f"Status transitions: {counts.went_live} -> live, {counts.finished} -> finished")
    return counts
