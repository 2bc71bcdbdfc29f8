import logging
import time
import requests
from datetime import datetime
from typing import Optional

import pytz

from .config import DISCORD_WEBHOOK_URL, DISCORD_HEALTH_WEBHOOK_URL
from .models import Bet, ComboBet, SettlementReport

logger = logging.getLogger(__name__)

GREEN = 3066993
GREY = 10181046


def _post_webhook(url: str, payload: dict, max_retries: int = 3) -> bool:
    """POST an embed payload, honouring Discord's retry_after on 429."""
    for attempt in range(max_retries):
        response = requests.post(url, json=payload, timeout=10)

        if response.status_code in (200, 204):
            return True

        if response.status_code == 429:
            try:
                retry_after = float(response.json().get("retry_after", 1.0))
            except (ValueError, AttributeError):
                retry_after = 1.0
            logger.warning(f"Discord Rate Limited. Sleeping for {retry_after}s...")
            time.sleep(retry_after + 0.1)
            continue

        logger.error(f"Webhook rejected ({response.status_code}): {response.text}")
        return False
    return False


def send_win_notification(bet: Bet, match_name: Optional[str] = None) -> bool:
    """Tell a user their bet just won. Never raises."""
    if not DISCORD_WEBHOOK_URL:
        return False

    try:
        is_combo = isinstance(bet, ComboBet)
        title = "🏆 COMBO BET WON" if is_combo else "🏆 BET WON"
        if is_combo:
            subject = f"{len(bet.selections)} legs @ **{bet.odds:.2f}**"
        else:
            subject = f"{match_name or bet.match_id}: {bet.choice.value} @ **{bet.odds}**"

        embed = {
            "title": title,
            "color": GREEN,
            "fields": [
                {"name": "Player", "value": str(bet.user_id), "inline": True},
                {"name": "Stake", "value": f"{bet.stake:g} {bet.currency.value}", "inline": True},
                {"name": "Bet", "value": subject, "inline": False},
                {"name": "Tokens Won", "value": str(bet.tokens_won), "inline": True},
                {"name": "Diamonds Won", "value": str(bet.diamonds_won), "inline": True},
            ],
            "footer": {"text": f"MockBet • Bet {bet.id}"},
            "timestamp": datetime.now(pytz.utc).isoformat(),
        }
        return _post_webhook(DISCORD_WEBHOOK_URL, {"embeds": [embed]})

    except Exception as e:
        logger.error(f"Error sending win notification for bet {bet.id}: {e}")
        return False


def send_settlement_report(report: SettlementReport) -> bool:
    if not DISCORD_WEBHOOK_URL:
        return False

    try:
        failures = report.failed + report.combo_failed
        embed = {
            "title": "📈 Settlement Report",
            "color": GREY if failures else GREEN,
            "fields": [
                {"name": "Simple Bets", "value": str(report.resolved), "inline": True},
                {"name": "Combo Bets", "value": str(report.combo_resolved), "inline": True},
                {"name": "Winners", "value": str(report.won), "inline": True},
                {"name": "Tokens Paid", "value": str(report.tokens_paid), "inline": True},
                {"name": "Diamonds Paid", "value": str(report.diamonds_paid), "inline": True},
                {"name": "Failures", "value": str(failures), "inline": True},
            ],
            "footer": {"text": "MockBet • Settlement"},
            "timestamp": datetime.now(pytz.utc).isoformat(),
        }
        sent = _post_webhook(DISCORD_WEBHOOK_URL, {"embeds": [embed]})
        logger.info(f"Sent settlement report: {report.message}")
        return sent

    except Exception as e:
        logger.error(f"Error sending settlement report: {e}")
        return False


def send_health_alert(status: str, message: str, color: int = 0x00FF00):
    """
    Send system health alerts (Startup, Error, Shutdown).
    Color: Green (0x00FF00) for info, Red (0xFF0000) for errors.
    """
    if not DISCORD_HEALTH_WEBHOOK_URL:
        return

    embed = {
        "title": f"System Alert: {status}",
        "description": message,
        "color": color,
        "timestamp": datetime.now(pytz.utc).isoformat(),
        "footer": {"text": "MockBet Health"},
    }

    try:
        requests.post(DISCORD_HEALTH_WEBHOOK_URL, json={"embeds": [embed]}, timeout=5)
    except Exception as e:
        logger.error(f"Failed to send health alert: {e}")
