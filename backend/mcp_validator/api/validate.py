from typing import Any, Dict, List

from fastapi import APIRouter, Body, Depends, HTTPException, Query
from sqlalchemy.ext.asyncio import AsyncSession
import logging

from mcp_validator.core.errors import SourceFetchError
from mcp_validator.db.session import get_db
from mcp_validator.schemas.report import (
    RuleInfo,
    StoredReportResponse,
    ValidateRepoRequest,
    ValidateResponse,
    ValidateSourceRequest,
    ValidationReport,
)
from mcp_validator.services.github_service import GitHubService, get_github_service
from mcp_validator.services.report_store import ReportStore
from mcp_validator.services.rules import DEFAULT_RULES
from mcp_validator.services.validator import ValidatorService
from mcp_validator.utils.url_helpers import source_label

router = APIRouter()
logger = logging.getLogger(__name__)


# Dependency for ValidatorService
def get_validator_service(github: GitHubService = Depends(get_github_service)):
    return ValidatorService(github=github)


# Dependency for ReportStore
def get_report_store(db: AsyncSession = Depends(get_db)):
    return ReportStore(db)


async def _persist(
    store: ReportStore,
    db: AsyncSession,
    fingerprint: str,
    report: ValidationReport,
    markdown: str,
    source: str,
) -> None:
    try:
        await store.save_report(fingerprint, report, markdown, source)
        # Commit the store write
        await db.commit()
        logger.info(f"Stored report {fingerprint} for {source}")
    except Exception as e:
        # If storing fails, log but don't fail the request
        logger.error(f"Failed to store report {fingerprint}: {e}", exc_info=True)
        await db.rollback()


@router.post("", response_model=ValidateResponse)
async def validate_manifest(
    payload: Dict[str, Any] = Body(...),
    persist: bool = Query(False, description="Store the rendered report"),
    validator: ValidatorService = Depends(get_validator_service),
    store: ReportStore = Depends(get_report_store),
    db: AsyncSession = Depends(get_db),
):
    """
    Validate a tools/list-style manifest.

    Declarations that cannot be read are reported as notes in the report
    rather than rejecting the whole manifest.
    """
    logger.debug(f"[VALIDATE] Manifest with keys: {sorted(payload)}")
    try:
        fingerprint, report = validator.validate_manifest(payload)
        markdown = validator.render(report)
    except Exception as e:
        logger.error(f"Unexpected validation error for manifest: {e}", exc_info=True)
        return ValidateResponse(status="failed", error="Internal validation error")

    if persist:
        await _persist(store, db, fingerprint, report, markdown, "manifest")

    return ValidateResponse(status="success", fingerprint=fingerprint, report=report, markdown=markdown)


@router.post("/source", response_model=ValidateResponse)
async def validate_source(
    request: ValidateSourceRequest,
    validator: ValidatorService = Depends(get_validator_service),
    store: ReportStore = Depends(get_report_store),
    db: AsyncSession = Depends(get_db),
):
    """Validate the Python source of an MCP server module."""
    logger.debug(f"[VALIDATE] Source for '{request.server_name}' ({len(request.source)} chars)")
    try:
        fingerprint, report = validator.validate_source(request.source, request.server_name)
        markdown = validator.render(report)
    except Exception as e:
        logger.error(f"Unexpected validation error for source '{request.server_name}': {e}", exc_info=True)
        return ValidateResponse(status="failed", error="Internal validation error")

    if request.persist:
        await _persist(store, db, fingerprint, report, markdown, "source")

    return ValidateResponse(status="success", fingerprint=fingerprint, report=report, markdown=markdown)


@router.post("/repo", response_model=ValidateResponse)
async def validate_repository(
    request: ValidateRepoRequest,
    validator: ValidatorService = Depends(get_validator_service),
    store: ReportStore = Depends(get_report_store),
    db: AsyncSession = Depends(get_db),
):
    """
    Fetch a server module from GitHub and validate it.

    Reports are stored by descriptor fingerprint. If the fetched module
    declares exactly what an earlier run saw, the stored report is returned
    unless force=True.
    """
    label = source_label(request.repo_url, request.path, request.ref)
    logger.debug(f"[VALIDATE] Repository request: {label}, force={request.force}")

    try:
        extraction = await validator.extract_repo(request.repo_url, request.path, request.ref)
    except SourceFetchError as e:
        logger.error(f"Fetching {label} failed: {e}")
        return ValidateResponse(status="failed", error=str(e))

    fingerprint = extraction.fingerprint()

    if not request.force:
        record = await store.get_report(fingerprint)
        if record:
            logger.info(f"Stored report hit for {label}")
            return ValidateResponse(
                status="cached",
                fingerprint=fingerprint,
                report=ValidationReport.model_validate(record.report),
                markdown=record.markdown,
            )
    else:
        logger.info(f"Force re-validation requested for {label}, bypassing stored reports")

    try:
        _, report = validator.validate_extraction(extraction)
        markdown = validator.render(report)
    except Exception as e:
        logger.error(f"Unexpected validation error for {label}: {e}", exc_info=True)
        return ValidateResponse(status="failed", error="Internal validation error")

    await _persist(store, db, fingerprint, report, markdown, label)

    return ValidateResponse(status="success", fingerprint=fingerprint, report=report, markdown=markdown)


@router.get("/reports/{fingerprint}", response_model=StoredReportResponse)
async def get_stored_report(
    fingerprint: str,
    store: ReportStore = Depends(get_report_store),
):
    record = await store.get_report(fingerprint)
    if not record:
        raise HTTPException(status_code=404, detail="Report not found")

    return StoredReportResponse(
        fingerprint=record.fingerprint,
        server_name=record.server_name,
        source=record.source,
        report=record.report,
        markdown=record.markdown,
        critical_count=record.critical_count,
    )


@router.delete("/reports/{fingerprint}")
async def delete_stored_report(
    fingerprint: str,
    store: ReportStore = Depends(get_report_store),
    db: AsyncSession = Depends(get_db),
):
    """Remove a stored report so the next repository run re-validates."""
    try:
        deleted = await store.delete_report(fingerprint)
        await db.commit()
    except Exception as e:
        logger.error(f"Error deleting stored report {fingerprint}: {e}", exc_info=True)
        await db.rollback()
        raise HTTPException(status_code=500, detail="Failed to delete report due to an internal error")

    if deleted:
        logger.info(f"Deleted stored report {fingerprint}")
        return {"status": "success", "message": f"Report {fingerprint} deleted"}
    return {"status": "success", "message": f"No stored report for {fingerprint}"}


@router.get("/rules", response_model=List[RuleInfo])
async def list_rules():
    """The fixed rule battery, in evaluation order."""
    return [rule.info() for rule in DEFAULT_RULES]
