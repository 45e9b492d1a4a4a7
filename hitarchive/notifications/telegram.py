"""Telegram digest: HTML messages through the Bot API."""

import html
import time
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Sequence

import requests

from ..fetchers.common import classify_http_error, raise_for_status
from ..normalize import utcnow
from ..retry import FatalError, RetryExecutor

TELEGRAM_API = "https://api.telegram.org/bot{token}/sendMessage"
MAX_MESSAGE_LENGTH = 4000  # hard limit is 4096
CHUNK_SIZE = 5


def escape_html(text: str) -> str:
    return html.escape(text, quote=True)


def date_label(now: Optional[datetime] = None) -> str:
    now = now or utcnow()
    return f"{now.day} {now:%B %Y}"


def format_post(record: Any, index: int) -> str:
    score = round((record.relevance_score or 0) * 100)
    name = escape_html(record.title or "Untitled")
    interest = escape_html(record.matched_category or "-")
    url = escape_html(record.url or "")

    text = f'<b>{index}. <a href="{url}">{name}</a></b> [{score}% · {record.source}]\n'
    if record.summary:
        text += f"\n{escape_html(record.summary)}\n\n"
    text += f"({interest})\n"
    return text


def _header(label: str) -> str:
    return f"🔥 <b>hitarchive digest</b>\n📅 {label}\n\n"


def _footer(stats: Dict[str, Any]) -> str:
    return f"\n📊 Scored: {stats.get('scored', 0)} of {stats.get('total', 0)} records"


def build_messages(records: Sequence[Any], stats: Dict[str, Any], label: Optional[str] = None) -> List[str]:
    """
    One message when the digest fits, otherwise chunks of CHUNK_SIZE posts
    with the header on the first and the footer on the last.
    """
    label = label or date_label()
    body = "".join(format_post(r, i + 1) + "\n" for i, r in enumerate(records))
    message = _header(label) + body + _footer(stats)
    if len(message) <= MAX_MESSAGE_LENGTH:
        return [message]

    messages = []
    for start in range(0, len(records), CHUNK_SIZE):
        chunk = records[start:start + CHUNK_SIZE]
        text = _header(label) if start == 0 else ""
        text += "".join(format_post(r, start + j + 1) + "\n" for j, r in enumerate(chunk))
        if start + CHUNK_SIZE >= len(records):
            text += _footer(stats)
        messages.append(text)
    return messages


def send_message(bot_token: str, chat_id: str, text: str, timeout: float = 30) -> None:
    resp = requests.post(
        TELEGRAM_API.format(token=bot_token),
        json={
            "chat_id": chat_id,
            "text": text,
            "parse_mode": "HTML",
            "disable_web_page_preview": True,
        },
        timeout=timeout,
    )
    raise_for_status(resp)
    result = resp.json()
    if not result.get("ok"):
        raise FatalError(f"Telegram API error: {result.get('description', result)}")


def send_digest(
    records: Sequence[Any],
    stats: Dict[str, Any],
    bot_token: str,
    chat_id: str,
    executor: RetryExecutor,
    delay: float = 0.5,
    sleep: Callable[[float], None] = time.sleep,
) -> int:
    """Send the digest; returns the number of messages sent."""
    messages = build_messages(records, stats)
    for i, text in enumerate(messages):
        executor.execute(
            lambda: send_message(bot_token, chat_id, text),
            classify=classify_http_error,
            identifier=f"telegram {i + 1}/{len(messages)}",
        )
        if i < len(messages) - 1 and delay > 0:
            sleep(delay)
    return len(messages)
