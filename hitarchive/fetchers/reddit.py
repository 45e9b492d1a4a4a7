"""Reddit fetcher: weekly top posts from configured subreddits."""

import time
from typing import Any, Callable, Dict, Iterable, List, Optional

from ..logger import get_logger
from ..normalize import base36_to_int, parse_timestamp
from ..retry import RetryExecutor
from .common import classify_http_error, get_json

LISTING_URL = "https://www.reddit.com/r/{subreddit}/top.json"


def thread_to_record(thread: Dict[str, Any]) -> Dict[str, Any]:
    sub = thread.get("subreddit")
    return {
        "external_id": base36_to_int(thread["id"]),
        "source": "reddit",
        "author": thread.get("author"),
        "title": thread.get("title"),
        "popularity": thread.get("score") or 0,
        "description": f"/r/{sub}",
        "url": f"https://www.reddit.com{thread.get('permalink', '')}",
        "created_at": parse_timestamp(thread.get("created_utc")),
    }


def keep_thread(thread: Dict[str, Any], min_score: int, flair_filter: Optional[Iterable[str]] = None) -> bool:
    if (thread.get("score") or 0) < min_score:
        return False
    if flair_filter and thread.get("link_flair_text") not in set(flair_filter):
        return False
    return True


def fetch_subreddit(
    subreddit: str,
    min_score: int,
    executor: RetryExecutor,
    flair_filter: Optional[Iterable[str]] = None,
) -> List[Dict[str, Any]]:
    data = executor.execute(
        lambda: get_json(
            LISTING_URL.format(subreddit=subreddit),
            params={"sort": "top", "t": "week", "limit": 100},
        ),
        classify=classify_http_error,
        identifier=f"r/{subreddit}",
    )
    children = ((data or {}).get("data") or {}).get("children") or []
    records = []
    for child in children:
        thread = child.get("data") or {}
        if not thread.get("id"):
            continue
        if keep_thread(thread, min_score, flair_filter):
            records.append(thread_to_record(thread))
    return records


def fetch_reddit(
    subreddits: Iterable[str],
    min_score: int,
    executor: RetryExecutor,
    flair_filters: Optional[Dict[str, Iterable[str]]] = None,
    delay: float = 0.5,
    sleep: Callable[[float], None] = time.sleep,
) -> Dict[str, Any]:
    """
    Fetch every subreddit; a failing subreddit is logged and skipped.

    Returns:
        {"records": [...], "failed": [subreddit, ...]}
    """
    logger = get_logger()
    flair_filters = flair_filters or {}
    records: List[Dict[str, Any]] = []
    failed: List[str] = []
    subreddits = list(subreddits)

    for i, subreddit in enumerate(subreddits):
        try:
            found = fetch_subreddit(subreddit, min_score, executor, flair_filters.get(subreddit))
            records.extend(found)
            logger.info(f"Reddit r/{subreddit}: {len(found)} posts")
        except Exception as e:
            failed.append(subreddit)
            logger.error(f"Reddit r/{subreddit} failed", error=str(e))
        if i < len(subreddits) - 1 and delay > 0:
            sleep(delay)

    return {"records": records, "failed": failed}
