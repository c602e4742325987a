import httpx
import pytest
from unittest.mock import AsyncMock, MagicMock, patch

from mcp_validator.core.errors import SourceFetchError
from mcp_validator.services.github_service import MAX_RETRIES, MAX_SOURCE_BYTES, GitHubService

CONTENTS_URL = "https://api.github.com/repos/owner/repo/contents/server.py"


def _response(status_code, text="", headers=None):
    return httpx.Response(
        status_code,
        text=text,
        headers=headers,
        request=httpx.Request("GET", CONTENTS_URL),
    )


def _mock_client(*outcomes):
    """Patchable AsyncClient whose `get` returns/raises `outcomes` in order."""
    client = MagicMock()
    client.get = AsyncMock(side_effect=list(outcomes))
    context = MagicMock()
    context.__aenter__ = AsyncMock(return_value=client)
    context.__aexit__ = AsyncMock(return_value=False)
    return context, client


class TestGitHubService:
    """Test cases for GitHub source fetching."""

    def setup_method(self):
        """Set up test fixtures."""
        self.service = GitHubService(token=None, timeout=5.0)

    def test_parse_github_url_valid_https(self):
        """Test parsing valid HTTPS GitHub URLs."""
        test_cases = [
            ("https://github.com/owner/repo", ("owner", "repo")),
            ("https://github.com/owner/repo.git", ("owner", "repo")),
            ("https://github.com/owner/repo/", ("owner", "repo")),
            ("https://www.github.com/owner/repo", ("owner", "repo")),
        ]

        for url, expected in test_cases:
            result = self.service.parse_github_url(url)
            assert result == expected, f"Failed for URL: {url}"

    def test_parse_github_url_valid_ssh(self):
        """Test parsing valid SSH GitHub URLs."""
        result = self.service.parse_github_url("git@github.com:owner/repo.git")
        assert result == ("owner", "repo")

    def test_parse_github_url_invalid(self):
        """Test parsing invalid URLs returns None."""
        invalid_urls = [
            "",
            None,
            "https://gitlab.com/owner/repo",
            "https://github.com/owner",
            "not-a-url",
            "https://github.com/",
        ]

        for url in invalid_urls:
            result = self.service.parse_github_url(url)
            assert result is None, f"Should return None for: {url}"

    def test_headers_include_token_when_configured(self):
        assert "Authorization" not in self.service._headers()
        service = GitHubService(token="ghp_test")
        assert service._headers()["Authorization"] == "token ghp_test"
        assert service._headers()["Accept"] == "application/vnd.github.raw+json"

    @pytest.mark.asyncio
    async def test_fetch_source_invalid_url(self):
        with pytest.raises(SourceFetchError):
            await self.service.fetch_source("https://gitlab.com/owner/repo", "server.py")

    @pytest.mark.asyncio
    async def test_fetch_source_success(self):
        context, client = _mock_client(_response(200, text="print('hi')\n"))

        with patch("mcp_validator.services.github_service.httpx.AsyncClient", return_value=context):
            source = await self.service.fetch_source("https://github.com/owner/repo", "/server.py", "main")

        assert source == "print('hi')\n"
        args, kwargs = client.get.call_args
        assert args[0] == CONTENTS_URL
        assert kwargs["params"] == {"ref": "main"}

    @pytest.mark.asyncio
    async def test_fetch_file_not_found(self):
        context, client = _mock_client(_response(404))

        with patch("mcp_validator.services.github_service.httpx.AsyncClient", return_value=context):
            with pytest.raises(SourceFetchError, match="not found"):
                await self.service.fetch_file("owner", "repo", "server.py")

        assert client.get.await_count == 1

    @pytest.mark.asyncio
    async def test_fetch_file_rate_limited(self):
        context, client = _mock_client(
            _response(403, headers={"X-RateLimit-Remaining": "0", "X-RateLimit-Reset": "1700000000"})
        )

        with patch("mcp_validator.services.github_service.httpx.AsyncClient", return_value=context):
            with pytest.raises(SourceFetchError, match="rate limit"):
                await self.service.fetch_file("owner", "repo", "server.py")

        assert client.get.await_count == 1

    @pytest.mark.asyncio
    async def test_fetch_file_retries_server_errors_then_succeeds(self):
        context, client = _mock_client(
            _response(502),
            httpx.ConnectTimeout("timed out"),
            _response(200, text="ok"),
        )

        with patch("mcp_validator.services.github_service.httpx.AsyncClient", return_value=context), \
             patch("mcp_validator.services.github_service.asyncio.sleep", new_callable=AsyncMock) as mock_sleep:
            source = await self.service.fetch_file("owner", "repo", "server.py")

        assert source == "ok"
        assert client.get.await_count == 3
        assert [c.args[0] for c in mock_sleep.await_args_list] == [1, 2]

    @pytest.mark.asyncio
    async def test_fetch_file_gives_up_after_max_retries(self):
        context, client = _mock_client(*[httpx.ConnectError("refused")] * MAX_RETRIES)

        with patch("mcp_validator.services.github_service.httpx.AsyncClient", return_value=context), \
             patch("mcp_validator.services.github_service.asyncio.sleep", new_callable=AsyncMock):
            with pytest.raises(SourceFetchError, match="network error"):
                await self.service.fetch_file("owner", "repo", "server.py")

        assert client.get.await_count == MAX_RETRIES

    @pytest.mark.asyncio
    async def test_fetch_file_rejects_oversized_files(self):
        context, _ = _mock_client(_response(200, text="x" * (MAX_SOURCE_BYTES + 1)))

        with patch("mcp_validator.services.github_service.httpx.AsyncClient", return_value=context):
            with pytest.raises(SourceFetchError, match="larger than"):
                await self.service.fetch_file("owner", "repo", "server.py")

    @pytest.mark.asyncio
    async def test_fetch_file_requires_a_path(self):
        with pytest.raises(SourceFetchError):
            await self.service.fetch_file("owner", "repo", "  ")
