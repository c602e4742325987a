import logging
from typing import Any, Dict, Iterable, Optional, Tuple

from mcp_validator.schemas.descriptors import ServerDescriptor
from mcp_validator.schemas.report import Finding, ValidationReport
from mcp_validator.services.extractor import ExtractionResult, ManifestExtractor
from mcp_validator.services.github_service import GitHubService, get_github_service
from mcp_validator.services.report_builder import build_report
from mcp_validator.services.report_renderer import render_markdown
from mcp_validator.services.rule_engine import RuleEngine
from mcp_validator.services.source_extractor import SourceExtractor

logger = logging.getLogger(__name__)


class ValidatorService:
    """
    Entry point tying extraction, rule evaluation and reporting together.

    Every `validate_*` method returns the report along with the fingerprint
    of the descriptors it was built from, which is the report-store key.
    """

    def __init__(
        self,
        engine: Optional[RuleEngine] = None,
        github: Optional[GitHubService] = None,
        concurrent: bool = False,
    ):
        self.engine = engine or RuleEngine()
        self.github = github
        self.concurrent = concurrent
        self.manifest_extractor = ManifestExtractor()
        self.source_extractor = SourceExtractor()

    def validate_server(
        self, server: ServerDescriptor, notices: Iterable[Finding] = ()
    ) -> ValidationReport:
        if self.concurrent:
            findings = self.engine.run_concurrently(server)
        else:
            findings = self.engine.run(server)
        return build_report(server, findings, notices)

    def validate_extraction(self, result: ExtractionResult) -> Tuple[str, ValidationReport]:
        report = self.validate_server(result.server, result.notices)
        return result.fingerprint(), report

    def validate_manifest(self, payload: Dict[str, Any]) -> Tuple[str, ValidationReport]:
        """Validate a tools/list-style JSON manifest."""
        return self.validate_extraction(self.manifest_extractor.extract(payload))

    def validate_source(
        self, source: str, server_name: str = "unnamed-server"
    ) -> Tuple[str, ValidationReport]:
        """Validate the Python source of an MCP server module."""
        return self.validate_extraction(self.source_extractor.extract(source, server_name))

    async def extract_repo(self, repo_url: str, path: str = "server.py", ref: str = "HEAD") -> ExtractionResult:
        """
        Fetch a server module from GitHub and extract its descriptors.

        Raises:
            SourceFetchError: If the file could not be fetched.
        """
        github = self.github or get_github_service()
        source = await github.fetch_source(repo_url, path, ref)

        parsed = github.parse_github_url(repo_url)
        server_name = parsed[1] if parsed else path
        logger.info(f"Fetched {len(source)} bytes from {repo_url} ({path}@{ref})")
        return self.source_extractor.extract(source, server_name)

    async def validate_repo(
        self, repo_url: str, path: str = "server.py", ref: str = "HEAD"
    ) -> Tuple[str, ValidationReport]:
        """Fetch a server module from GitHub and validate it."""
        return self.validate_extraction(await self.extract_repo(repo_url, path, ref))

    @staticmethod
    def render(report: ValidationReport) -> str:
        return render_markdown(report)
