"""
URL normalization utilities for consistent report labels.

Stored reports record where their source came from. These helpers make sure
the same repository file always gets the same label regardless of URL
variations (trailing slashes, case differences, .git suffixes).
"""
from urllib.parse import urlparse, urlunparse


def normalize_github_url(url: str) -> str:
    """
    Normalize a GitHub repository URL to a consistent format.

    Examples:
        >>> normalize_github_url("https://GitHub.com/User/Repo/")
        'https://github.com/user/repo'

        >>> normalize_github_url("HTTPS://GITHUB.COM/USER/REPO.git")
        'https://github.com/user/repo'
    """
    parsed = urlparse(url.strip())

    # GitHub owner and repository names are case-insensitive
    normalized_path = parsed.path.lower().rstrip("/")
    if normalized_path.endswith(".git"):
        normalized_path = normalized_path[: -len(".git")]

    # Query params and fragments never identify a repository
    return urlunparse((
        parsed.scheme.lower(),
        parsed.netloc.lower(),
        normalized_path,
        "",
        "",
        "",
    ))


def source_label(repo_url: str, path: str, ref: str = "HEAD") -> str:
    """
    Label for a file inside a repository, e.g. 'https://github.com/o/r/server.py@main'.

    File paths are case-sensitive, so only the repository part is lowercased.

        >>> source_label("https://github.com/Org/Tools/", "/src/server.py", "v1")
        'https://github.com/org/tools/src/server.py@v1'
    """
    return f"{normalize_github_url(repo_url)}/{path.strip().lstrip('/')}@{ref}"
