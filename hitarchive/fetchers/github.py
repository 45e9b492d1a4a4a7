"""
GitHub repository search, one date window at a time.

The search API returns at most 1000 results (10 pages of 100) per distinct
query, so callers split the backfill into windows small enough to stay
under that cap and use ``hit_limit`` to warn when one did not.
"""

import re
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

from ..checkpoint import Window, hit_result_cap
from ..logger import get_logger
from ..normalize import parse_timestamp
from ..retry import RetryExecutor
from .common import classify_github_error, get_json

SEARCH_URL = "https://api.github.com/search/repositories"
PER_PAGE = 100
MAX_PAGES = 10

_REPO_URL = re.compile(r"github\.com/([^/]+)/([^/?#]+)")


@dataclass
class WindowResult:
    records: List[Dict[str, Any]] = field(default_factory=list)
    total_count: int = 0
    hit_limit: bool = False


def build_search_query(language: str, window: Window, min_stars: int) -> str:
    """e.g. ``language:python created:2024-01-01..2024-01-07 stars:>=10``"""
    return f"language:{language} created:{window.query_range()} stars:>={min_stars}"


def github_headers(token: Optional[str] = None, accept: str = "application/vnd.github+json") -> Dict[str, str]:
    headers = {"Accept": accept}
    if token:
        headers["Authorization"] = f"Bearer {token}"
    return headers


def parse_repo_url(url: str) -> Optional[tuple]:
    """``https://github.com/owner/repo`` -> ``("owner", "repo")``"""
    match = _REPO_URL.search(url or "")
    if not match:
        return None
    return match.group(1), match.group(2)


def repo_to_record(repo: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "external_id": str(repo["id"]),
        "source": "github",
        "author": (repo.get("owner") or {}).get("login"),
        "title": repo.get("name"),
        "popularity": repo.get("stargazers_count") or 0,
        "description": repo.get("description") or "",
        "url": repo.get("html_url"),
        "created_at": parse_timestamp(repo.get("created_at")),
    }


def fetch_window(
    window: Window,
    language: str,
    min_stars: int,
    executor: RetryExecutor,
    token: Optional[str] = None,
    page_delay: float = 0.2,
    sleep: Callable[[float], None] = time.sleep,
) -> WindowResult:
    """
    Fetch every page of one (window, language) query.

    Each page goes through the executor, so a 403/429 waits the cooldown and
    retries that same page.
    """
    logger = get_logger()
    query = build_search_query(language, window, min_stars)
    headers = github_headers(token)
    result = WindowResult()

    for page in range(1, MAX_PAGES + 1):
        params = {
            "q": query,
            "sort": "stars",
            "order": "desc",
            "per_page": PER_PAGE,
            "page": page,
        }
        data = executor.execute(
            lambda: get_json(SEARCH_URL, params=params, headers=headers),
            classify=classify_github_error,
            identifier=f"{language} {window} p{page}",
        )

        if page == 1:
            result.total_count = int(data.get("total_count") or 0)

        items = data.get("items") or []
        if not items:
            break

        for repo in items:
            if (repo.get("stargazers_count") or 0) < min_stars:
                continue
            result.records.append(repo_to_record(repo))

        if len(items) < PER_PAGE:
            break
        if page < MAX_PAGES and page_delay > 0:
            sleep(page_delay)

    result.hit_limit = hit_result_cap(result.total_count, len(result.records))
    logger.debug(
        f"GitHub window {window} ({language}): {len(result.records)}/{result.total_count}",
        hit_limit=result.hit_limit,
    )
    return result
