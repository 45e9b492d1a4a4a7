"""Slack digest: Block Kit messages through an incoming webhook."""

import time
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

import requests

from ..fetchers.common import classify_http_error, raise_for_status
from ..retry import RetryExecutor
from .telegram import date_label

MAX_BLOCKS = 45  # Slack rejects more than 50


def format_post_blocks(record: Any, index: int) -> List[Dict[str, Any]]:
    score = round((record.relevance_score or 0) * 100)
    name = record.title or "Untitled"
    blocks: List[Dict[str, Any]] = [
        {
            "type": "section",
            "text": {"type": "mrkdwn", "text": f"*{index}. <{record.url}|{name}>* [{score}% · {record.source}]"},
        },
    ]
    if record.summary:
        blocks.append({"type": "section", "text": {"type": "mrkdwn", "text": record.summary}})
    blocks.append({
        "type": "context",
        "elements": [{"type": "mrkdwn", "text": f"_{record.matched_category or '-'}_"}],
    })
    return blocks


def _fallback_text(records: Sequence[Any]) -> str:
    lines = []
    for i, r in enumerate(records):
        score = round((r.relevance_score or 0) * 100)
        lines.append(f"{i + 1}. <{r.url}|{r.title}> [{score}%] {r.summary or ''}".rstrip())
    return "\n".join(lines)


def build_messages(
    records: Sequence[Any],
    stats: Dict[str, Any],
    label: Optional[str] = None,
) -> List[Tuple[str, List[Dict[str, Any]]]]:
    """
    Split the digest into (fallback text, blocks) messages of at most
    MAX_BLOCKS blocks each; a post's blocks are never split.
    """
    label = label or date_label()
    current: List[Dict[str, Any]] = [
        {"type": "header", "text": {"type": "plain_text", "text": "🔥 hitarchive digest", "emoji": True}},
        {"type": "context", "elements": [{"type": "mrkdwn", "text": f"📅 {label}"}]},
        {"type": "divider"},
    ]
    messages: List[Tuple[str, List[Dict[str, Any]]]] = []

    for i, record in enumerate(records):
        post_blocks = format_post_blocks(record, i + 1)
        if len(current) + len(post_blocks) > MAX_BLOCKS:
            messages.append((f"hitarchive digest - part {len(messages) + 1}", current))
            current = []
        current.extend(post_blocks)
        if i < len(records) - 1:
            current.append({"type": "divider"})

    footer = [
        {"type": "divider"},
        {
            "type": "context",
            "elements": [{
                "type": "mrkdwn",
                "text": f"📊 Scored: {stats.get('scored', 0)} of {stats.get('total', 0)} records",
            }],
        },
    ]
    if len(current) + len(footer) > MAX_BLOCKS:
        messages.append((f"hitarchive digest - part {len(messages) + 1}", current))
        current = []
    current.extend(footer)
    messages.append((_fallback_text(records), current))
    return messages


def send_message(webhook_url: str, text: str, blocks: List[Dict[str, Any]], timeout: float = 30) -> None:
    resp = requests.post(webhook_url, json={"text": text, "blocks": blocks}, timeout=timeout)
    raise_for_status(resp)


def send_digest(
    records: Sequence[Any],
    stats: Dict[str, Any],
    webhook_url: str,
    executor: RetryExecutor,
    delay: float = 0.5,
    sleep: Callable[[float], None] = time.sleep,
) -> int:
    """Send the digest; returns the number of messages sent."""
    messages = build_messages(records, stats)
    for i, (text, blocks) in enumerate(messages):
        executor.execute(
            lambda: send_message(webhook_url, text, blocks),
            classify=classify_http_error,
            identifier=f"slack {i + 1}/{len(messages)}",
        )
        if i < len(messages) - 1 and delay > 0:
            sleep(delay)
    return len(messages)
