import asyncio
import logging
import re
from datetime import datetime
from typing import Optional, Tuple
from urllib.parse import quote

import httpx

from mcp_validator.core.config import settings
from mcp_validator.core.errors import SourceFetchError

logger = logging.getLogger(__name__)

# GitHub API constants
GITHUB_API_BASE = "https://api.github.com"
MAX_RETRIES = 3
BACKOFF_FACTOR = 2
# Server sources larger than this are refused rather than parsed
MAX_SOURCE_BYTES = 1_000_000

# GitHub URL patterns
GITHUB_URL_PATTERNS = [
    re.compile(r"^https?://github\.com/([^/]+)/([^/]+?)(?:\.git)?/?$"),
    re.compile(r"^git@github\.com:([^/]+)/([^/]+?)(?:\.git)?$"),
    re.compile(r"^https?://www\.github\.com/([^/]+)/([^/]+?)(?:\.git)?/?$"),
]


class GitHubService:
    """
    Service for fetching MCP server source files from GitHub.

    Features:
    - URL parsing for various GitHub URL formats
    - Raw file download through the contents API
    - Rate limit detection and error handling
    - Exponential backoff for retries
    """

    def __init__(self, token: Optional[str] = None, timeout: Optional[float] = None):
        self.token = token if token is not None else settings.GITHUB_TOKEN
        self.timeout = timeout or settings.GITHUB_TIMEOUT_SECONDS

    def parse_github_url(self, url: str) -> Optional[Tuple[str, str]]:
        """
        Parse GitHub repository URL to extract owner and repository name.

        Supports various GitHub URL formats:
        - https://github.com/owner/repo
        - https://github.com/owner/repo.git
        - git@github.com:owner/repo.git
        - https://www.github.com/owner/repo

        Args:
            url: GitHub repository URL

        Returns:
            Tuple of (owner, repo) if valid GitHub URL, None otherwise
        """
        if not url or not isinstance(url, str):
            return None

        url = url.strip()
        if not url:
            return None

        for pattern in GITHUB_URL_PATTERNS:
            match = pattern.match(url)
            if match:
                owner, repo = match.groups()
                if repo.endswith('.git'):
                    repo = repo[:-4]
                return owner, repo

        return None

    def _headers(self) -> dict:
        headers = {
            "Accept": "application/vnd.github.raw+json",
            "User-Agent": "MCP-Tool-Validator/1.0"
        }
        if self.token:
            headers["Authorization"] = f"token {self.token}"
        return headers

    async def fetch_source(self, repo_url: str, path: str, ref: str = "HEAD") -> str:
        """
        Fetch the raw text of a file from a GitHub repository.

        Args:
            repo_url: GitHub repository URL
            path: File path inside the repository (e.g. 'src/server.py')
            ref: Branch, tag or commit SHA

        Returns:
            The file contents as text

        Raises:
            SourceFetchError: If the URL is invalid, the file does not exist,
                the rate limit is exhausted or all retries failed.
        """
        parsed = self.parse_github_url(repo_url)
        if not parsed:
            raise SourceFetchError(f"Not a valid GitHub repository URL: {repo_url}")
        owner, repo = parsed
        return await self.fetch_file(owner, repo, path, ref)

    async def fetch_file(self, owner: str, repo: str, path: str, ref: str = "HEAD") -> str:
        clean_path = path.strip().lstrip("/")
        if not clean_path:
            raise SourceFetchError("A file path inside the repository is required")

        url = f"{GITHUB_API_BASE}/repos/{owner}/{repo}/contents/{quote(clean_path)}"
        target = f"{owner}/{repo}/{clean_path}@{ref}"
        timeout = httpx.Timeout(self.timeout)
        last_error = "unknown error"

        for attempt in range(MAX_RETRIES):
            try:
                async with httpx.AsyncClient(timeout=timeout) as client:
                    response = await client.get(url, headers=self._headers(), params={"ref": ref})

                    # Handle rate limiting
                    if response.status_code in (403, 429):
                        if response.headers.get("X-RateLimit-Remaining", "") == "0":
                            reset_time = response.headers.get("X-RateLimit-Reset")
                            if reset_time:
                                reset_datetime = datetime.fromtimestamp(int(reset_time))
                                logger.warning(f"GitHub API rate limit exceeded. Resets at {reset_datetime}")
                            raise SourceFetchError("GitHub API rate limit exceeded. Set GITHUB_TOKEN or try later.")
                        raise SourceFetchError(f"Access to {target} was denied (HTTP {response.status_code})")

                    # Handle not found
                    if response.status_code == 404:
                        logger.info(f"Source file {target} not found or private")
                        raise SourceFetchError(f"File '{clean_path}' not found in {owner}/{repo} at {ref}")

                    # Raise for other HTTP errors
                    response.raise_for_status()

                    if len(response.content) > MAX_SOURCE_BYTES:
                        raise SourceFetchError(f"File {target} is larger than {MAX_SOURCE_BYTES} bytes")

                    logger.debug(f"Fetched {len(response.content)} bytes from {target}")
                    return response.text

            except httpx.TimeoutException:
                last_error = "request timed out"
                logger.warning(f"Timeout fetching {target} (attempt {attempt + 1})")
            except httpx.HTTPStatusError as e:
                if e.response.status_code < 500:
                    # Don't retry client errors
                    raise SourceFetchError(f"Failed to fetch {target}: HTTP {e.response.status_code}") from e
                last_error = f"HTTP {e.response.status_code}"
                logger.warning(f"HTTP error fetching {target}: {e} (attempt {attempt + 1})")
            except httpx.RequestError as e:
                last_error = f"network error: {e}"
                logger.warning(f"Network error fetching {target}: {e} (attempt {attempt + 1})")

            # Exponential backoff for retries
            if attempt < MAX_RETRIES - 1:
                wait_time = BACKOFF_FACTOR ** attempt
                logger.debug(f"Retrying in {wait_time} seconds...")
                await asyncio.sleep(wait_time)

        logger.error(f"Failed to fetch {target} after {MAX_RETRIES} attempts: {last_error}")
        raise SourceFetchError(f"Failed to fetch {target}: {last_error}")


# Global service instance
_github_service: Optional[GitHubService] = None


def get_github_service() -> GitHubService:
    """Get the global GitHub service instance."""
    global _github_service
    if _github_service is None:
        _github_service = GitHubService()
    return _github_service
