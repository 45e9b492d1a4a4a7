"""Shared HTTP helpers for all fetchers."""

from typing import Any, Dict, Iterable, Optional

import requests

from ..retry import (
    ErrorKind,
    PipelineError,
    default_classify,
    should_retry_http_status,
)

USER_AGENT = "hitarchive"
DEFAULT_TIMEOUT = 30
RESPONSE_EXCERPT = 500


class HttpStatusError(PipelineError):
    """Non-2xx response, with the status and a body excerpt for the failure log."""

    def __init__(self, url: str, status_code: int, response: Optional[str] = None, retry_after=None):
        super().__init__(f"HTTP {status_code} for {url}")
        self.url = url
        self.status_code = status_code
        self.response = response
        self.retry_after = retry_after


def raise_for_status(resp: requests.Response) -> None:
    if resp.ok:
        return
    raise HttpStatusError(
        resp.url,
        resp.status_code,
        response=(resp.text or "")[:RESPONSE_EXCERPT],
        retry_after=resp.headers.get("retry-after"),
    )


def _headers(headers: Optional[Dict[str, str]]) -> Dict[str, str]:
    merged = {"User-Agent": USER_AGENT}
    merged.update(headers or {})
    return merged


def get_json(
    url: str,
    params: Optional[Dict[str, Any]] = None,
    headers: Optional[Dict[str, str]] = None,
    timeout: float = DEFAULT_TIMEOUT,
) -> Any:
    """GET a JSON document. Raises HttpStatusError on non-2xx."""
    resp = requests.get(url, params=params, headers=_headers(headers), timeout=timeout)
    raise_for_status(resp)
    return resp.json()


def get_text(
    url: str,
    headers: Optional[Dict[str, str]] = None,
    timeout: float = DEFAULT_TIMEOUT,
    missing_statuses: Iterable[int] = (404,),
) -> Optional[str]:
    """GET a text document; None when the status says it does not exist."""
    resp = requests.get(url, headers=_headers(headers), timeout=timeout)
    if resp.status_code in set(missing_statuses):
        return None
    raise_for_status(resp)
    return resp.text


def classify_http_error(error: BaseException, rate_limit_statuses: Iterable[int] = (429,)) -> ErrorKind:
    """
    Classify a requests / HttpStatusError failure.

    Timeouts and connection errors are transient; ``rate_limit_statuses``
    map to rate limiting; other retryable statuses are transient.
    """
    if isinstance(error, (requests.exceptions.Timeout, requests.exceptions.ConnectionError)):
        return ErrorKind.TRANSIENT
    status = getattr(error, "status_code", None)
    if status is None:
        response = getattr(error, "response", None)
        status = getattr(response, "status_code", None)
    if status is not None:
        if status in set(rate_limit_statuses):
            return ErrorKind.RATE_LIMITED
        if should_retry_http_status(status):
            return ErrorKind.TRANSIENT
        return ErrorKind.FATAL
    if isinstance(error, ValueError):
        # Undecodable JSON body
        return ErrorKind.FATAL
    return default_classify(error)


def classify_github_error(error: BaseException) -> ErrorKind:
    """GitHub signals rate limiting with 403 as well as 429."""
    return classify_http_error(error, rate_limit_statuses=(403, 429))
