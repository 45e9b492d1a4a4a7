"""
Digest notifications to Telegram and Slack.

Each channel has its own sent marker; records are marked only after the
whole digest went out, so a failed send is retried on the next run
(at-least-once delivery).
"""

from typing import Any, Callable, Dict, List

from ..database import CHANNEL_MARKERS
from ..logger import get_logger
from ..normalize import utcnow
from ..notifications import slack, telegram
from ..retry import ConfigError, StorageError
from ..stages import EligibilityParams, Step

NOTIFY_LIMIT = 50


def _senders(ctx) -> Dict[str, Callable[[List[Any], Dict[str, Any]], int]]:
    n = ctx.settings.notifications
    senders = {}
    if n.telegram_enabled:
        senders["telegram"] = lambda records, stats: telegram.send_digest(
            records, stats, n.telegram_bot_token, n.telegram_chat_id, ctx.http_executor, sleep=ctx.sleep,
        )
    if n.slack_enabled:
        senders["slack"] = lambda records, stats: slack.send_digest(
            records, stats, n.slack_webhook_url, ctx.http_executor, sleep=ctx.sleep,
        )
    return senders


def channel_params(ctx, channel: str) -> EligibilityParams:
    n = ctx.settings.notifications
    floor = n.telegram_min_score if channel == "telegram" else n.slack_min_score
    return EligibilityParams(
        threshold=ctx.settings.min_score,
        channel=channel,
        channel_floor=floor,
        recency_days=n.recency_days,
    )


def notify_channel(ctx, channel: str, send) -> Dict[str, Any]:
    logger = get_logger()
    records = ctx.store.select_eligible(Step.NOTIFY, channel_params(ctx, channel), limit=NOTIFY_LIMIT)
    if not records:
        logger.info(f"[{channel}] No new records to send")
        return {"sent": 0}

    try:
        messages = send(records, ctx.store.stats())
    except (StorageError, ConfigError):
        raise
    except Exception as e:
        logger.error(f"[{channel}] Digest failed", error=str(e))
        return {"sent": 0, "error": str(e)}

    marker = CHANNEL_MARKERS[channel]
    now = utcnow()
    for record in records:
        ctx.store.apply_stage_result(record.key, {marker: now})

    logger.info(f"[{channel}] Sent digest with {len(records)} records in {messages} message(s)")
    return {"sent": len(records), "messages": messages}


def run(ctx, options=None) -> Dict[str, Any]:
    logger = get_logger()
    senders = _senders(ctx)
    summary: Dict[str, Any] = {}
    for channel in CHANNEL_MARKERS:
        if channel not in senders:
            logger.info(f"[{channel}] Not configured, skipping")
            summary[channel] = {"sent": 0, "skipped": True}
            continue
        summary[channel] = notify_channel(ctx, channel, senders[channel])
    return summary
