import asyncio
import logging
import random
from datetime import datetime
from typing import Optional

import pytz

from .config import DB_PATH, SETTLEMENT_INTERVAL_MINUTES
from .models import SettlementReport
from .notifications import send_health_alert, send_settlement_report
from .resolver import BetResolver
from .storage import Storage

logger = logging.getLogger(__name__)


class SettlementScheduler:
    """Background trigger: runs a full settlement pass on a jittered interval."""

    MIN_INTERVAL = 120   # Hard floor for standard mode (2 mins)
    BURST_INTERVAL = 60  # Fast poll while results are still coming in

    def __init__(self, resolver: Optional[BetResolver] = None,
                 base_minutes: int = SETTLEMENT_INTERVAL_MINUTES):
        self.resolver = resolver or BetResolver(Storage(DB_PATH))
        self.base_minutes = base_minutes
        self.last_report: Optional[SettlementReport] = None

    def calculate_interval(self, busy: bool = False) -> int:
        """
        Burst Mode: 60s after a pass that settled something, since the
        other legs of a round of fixtures usually finish minutes apart.
        Standard Mode: base interval +/- 20% jitter, floored at MIN_INTERVAL.
        """
        if busy:
            return self.BURST_INTERVAL

        jitter = random.uniform(0.8, 1.2)
        interval = int(self.base_minutes * 60 * jitter)
        return max(interval, self.MIN_INTERVAL)

    async def run_once(self) -> SettlementReport:
        report = await self.resolver.run_settlement_pass()
        self.last_report = report

        if report.resolved or report.combo_resolved:
            await asyncio.to_thread(send_settlement_report, report)
        if not report.completed:
            logger.warning("Settlement pass ended early; remaining bets will be retried next tick.")
        return report

    async def run(self):
        msg = f"Settling bets every ~{self.base_minutes}m (burst {self.BURST_INTERVAL}s while busy)."
        logger.info(f"Starting Settlement Scheduler. {msg}")
        send_health_alert("Service Started", msg, color=0x00FF00)

        while True:
            try:
                start_time = datetime.now(pytz.utc)
                report = await self.run_once()
                elapsed = (datetime.now(pytz.utc) - start_time).total_seconds()

                busy = report.completed and (report.resolved + report.combo_resolved) > 0
                sleep_time = self.calculate_interval(busy) - elapsed

                if sleep_time > 0:
                    mode = "Burst" if busy else "Adaptive"
                    logger.info(f"Sleeping for {sleep_time:.2f}s ({mode})...")
                    await asyncio.sleep(sleep_time)
                else:
                    logger.warning(f"Pass took longer than interval ({elapsed:.2f}s)!")

            except Exception as e:
                logger.error(f"Error in settlement loop: {e}", exc_info=True)
                send_health_alert("Service Error", f"Exception in settlement loop: {str(e)}", color=0xFF0000)
                await asyncio.sleep(60) # Backoff on crash
