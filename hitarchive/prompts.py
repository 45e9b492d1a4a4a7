"""
Prompt templates and response parsers for scoring and enrichment.

Parsers never invent a default: a response without a usable JSON object
raises MalformedResponseError carrying the raw text for the failure log.
"""

import json
import re
from typing import Any, Dict, Mapping, Optional

import yaml

from .retry import MalformedResponseError

SCORING_TEMPLATE = """You rate how relevant an item is to a reader.

Reader profile:
{profile}

Interests by priority:
{interests_yaml}
Not interested in: {exclude_list}

Item ({source}):
Name: {title}
Author: {author}
Popularity: {popularity}
Description:
{description}

Reply with JSON only:
{{"score": <0.0-1.0>, "matched_interest": "<interest or null>"}}"""

ENRICHMENT_TEMPLATE = """Summarize this item for the reader below in 2-3 sentences:
what it is, what makes it notable, and why it matches their interest.

Reader profile:
{profile}

Matched interest: {matched_interest}

Item ({source}): {title} by {author}
URL: {url}
Popularity: {popularity}
Description:
{description}

Reply with JSON only:
{response_shape}"""

_JSON_OBJECT = re.compile(r"\{[\s\S]*\}")


def _field(record: Any, name: str) -> Any:
    if isinstance(record, Mapping):
        return record.get(name)
    return getattr(record, name, None)


def build_scoring_prompt(record: Any, profile: str, interests: Dict, exclude) -> str:
    return SCORING_TEMPLATE.format(
        profile=profile.strip() or "(none)",
        interests_yaml=yaml.safe_dump(interests or {}, allow_unicode=True, sort_keys=False),
        exclude_list=", ".join(exclude) or "(none)",
        source=_field(record, "source"),
        title=_field(record, "title") or "",
        author=_field(record, "author") or "",
        popularity=_field(record, "popularity") or 0,
        description=_field(record, "description") or "(no description)",
    )


def build_enrichment_prompt(record: Any, profile: str, language: str = "en") -> str:
    if language and language != "en":
        response_shape = (
            '{"summary": "...", "summary_local": "... (same summary in '
            f'{language}, keep technical terms in English)"}}'
        )
    else:
        response_shape = '{"summary": "..."}'
    return ENRICHMENT_TEMPLATE.format(
        profile=profile.strip() or "(none)",
        matched_interest=_field(record, "matched_category") or "general interest",
        source=_field(record, "source"),
        title=_field(record, "title") or "",
        author=_field(record, "author") or "",
        url=_field(record, "url") or "",
        popularity=_field(record, "popularity") or 0,
        description=_field(record, "description") or "(no description)",
        response_shape=response_shape,
    )


def extract_json(response: str) -> Dict[str, Any]:
    """Pull the first JSON object out of a model reply (code fences allowed)."""
    match = _JSON_OBJECT.search(response or "")
    if not match:
        raise MalformedResponseError("No JSON found in response", response=response)
    try:
        data = json.loads(match.group(0))
    except json.JSONDecodeError as e:
        raise MalformedResponseError(f"JSON parse error: {e}", response=response) from e
    if not isinstance(data, dict):
        raise MalformedResponseError("Response JSON is not an object", response=response)
    return data


def parse_score_response(response: str) -> Dict[str, Any]:
    """Returns ``{"score": float in 0..1, "matched_interest": str or None}``."""
    data = extract_json(response)
    try:
        score = float(data["score"])
    except (KeyError, TypeError, ValueError) as e:
        raise MalformedResponseError("Missing or non-numeric score", response=response) from e
    matched: Optional[str] = data.get("matched_interest") or None
    return {
        "score": max(0.0, min(1.0, score)),
        "matched_interest": str(matched) if matched is not None else None,
    }


def parse_enrichment_response(response: str) -> Dict[str, Optional[str]]:
    """Returns ``{"summary": str, "summary_local": str or None}``."""
    data = extract_json(response)
    summary = data.get("summary")
    if not isinstance(summary, str) or not summary.strip():
        raise MalformedResponseError("Empty summary in response", response=response)
    local = data.get("summary_local")
    return {
        "summary": summary.strip(),
        "summary_local": local.strip() if isinstance(local, str) and local.strip() else None,
    }
