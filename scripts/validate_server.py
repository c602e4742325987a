"""
Validate an MCP server from the command line and print the Markdown report.

    python scripts/validate_server.py path/to/server.py
    python scripts/validate_server.py tools.json
    python scripts/validate_server.py https://github.com/org/repo src/server.py

Exits with status 1 when the report contains a critical finding.
"""
import asyncio
import json
import sys
import os

# Add project root/backend to path
sys.path.append(os.path.join(os.getcwd(), "backend"))

from mcp_validator.core.errors import SourceFetchError
from mcp_validator.services.validator import ValidatorService


async def main(argv) -> int:
    if not argv:
        print(__doc__)
        return 2

    service = ValidatorService()
    target = argv[0]

    try:
        if target.startswith(("http://", "https://", "git@")):
            path = argv[1] if len(argv) > 1 else "server.py"
            ref = argv[2] if len(argv) > 2 else "HEAD"
            fingerprint, report = await service.validate_repo(target, path, ref)
        elif target.endswith(".json"):
            with open(target, encoding="utf-8") as f:
                manifest = json.load(f)
            if not isinstance(manifest, dict):
                print(f"ERROR: {target} must contain a JSON object, got {type(manifest).__name__}")
                return 2
            fingerprint, report = service.validate_manifest(manifest)
        else:
            with open(target, encoding="utf-8") as f:
                name = os.path.splitext(os.path.basename(target))[0]
                fingerprint, report = service.validate_source(f.read(), name)
    except (OSError, SourceFetchError, json.JSONDecodeError) as e:
        print(f"ERROR: {e}")
        return 2

    print(service.render(report))
    print(f"<!-- fingerprint: {fingerprint} -->")
    return 1 if report.has_critical else 0


if __name__ == "__main__":
    sys.exit(asyncio.run(main(sys.argv[1:])))
