"""README lookup for GitHub repositories with thin descriptions."""

from typing import Optional

from .common import HttpStatusError, get_text
from .github import github_headers, parse_repo_url

RAW_URL = "https://raw.githubusercontent.com/{owner}/{repo}/{branch}/{filename}"
API_README_URL = "https://api.github.com/repos/{owner}/{repo}/readme"

BRANCHES = ("main", "master")
README_FILES = ("README.md", "readme.md", "README.rst", "README.txt", "README")
MAX_README_LENGTH = 2000
TRUNCATED_MARKER = "\n\n[truncated]"


def truncate_readme(content: str, limit: int = MAX_README_LENGTH) -> str:
    if len(content) > limit:
        return content[:limit] + TRUNCATED_MARKER
    return content


def combine_description(description: Optional[str], readme: str) -> str:
    return f"{description}\n\n{readme}" if description else readme


def _missing(error: HttpStatusError) -> bool:
    # Client errors other than rate limiting mean "not here, try the next file"
    return 400 <= error.status_code < 500 and error.status_code not in (403, 429)


def fetch_readme(url: str, token: Optional[str] = None) -> Optional[str]:
    """
    Try raw.githubusercontent for main/master and the usual README names,
    then the API's raw README endpoint.

    Returns:
        Truncated README text, or None when the repository has none.

    Raises:
        HttpStatusError / requests errors on rate limits and server failures,
        so the caller's executor can retry.
    """
    parsed = parse_repo_url(url)
    if parsed is None:
        return None
    owner, repo = parsed

    for branch in BRANCHES:
        for filename in README_FILES:
            raw_url = RAW_URL.format(owner=owner, repo=repo, branch=branch, filename=filename)
            try:
                content = get_text(raw_url)
            except HttpStatusError as e:
                if _missing(e):
                    continue
                raise
            if content:
                return truncate_readme(content)

    api_url = API_README_URL.format(owner=owner, repo=repo)
    try:
        content = get_text(api_url, headers=github_headers(token, accept="application/vnd.github.v3.raw"))
    except HttpStatusError as e:
        if _missing(e):
            return None
        raise
    return truncate_readme(content) if content else None
