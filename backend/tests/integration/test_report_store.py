from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy.ext.asyncio import AsyncSession

from mcp_validator.schemas.report import Finding, RuleId, Severity
from mcp_validator.services.report_builder import build_report
from mcp_validator.services.report_renderer import render_markdown
from mcp_validator.services.report_store import ReportStore
from mcp_validator.schemas.descriptors import ServerDescriptor, ToolDescriptor

FINGERPRINT = "a" * 64


def _report(critical: bool = True):
    server = ServerDescriptor(
        name="store-test",
        tools=(ToolDescriptor(name="get-item", description="Returns one item"),),
    )
    findings = []
    if critical:
        findings.append(Finding(
            rule_id=RuleId.SECRET_LITERALS,
            severity=Severity.CRITICAL,
            subjects=("get-item",),
            message="Hardcoded credential",
        ))
    return build_report(server, findings)


@pytest.mark.asyncio
async def test_save_and_get_report(db_session: AsyncSession):
    store = ReportStore(db_session)
    report = _report()

    await store.save_report(FINGERPRINT, report, render_markdown(report), "manifest")
    await db_session.commit()

    record = await store.get_report(FINGERPRINT)
    assert record is not None
    assert record.server_name == "store-test"
    assert record.source == "manifest"
    assert record.critical_count == 1
    assert record.report["severity_counts"]["critical"] == 1
    assert record.markdown.startswith("# MCP Server Validation Report")


@pytest.mark.asyncio
async def test_get_missing_report(db_session: AsyncSession):
    assert await ReportStore(db_session).get_report("b" * 64) is None


@pytest.mark.asyncio
async def test_expired_report_is_not_returned(db_session: AsyncSession):
    store = ReportStore(db_session, ttl_days=1)
    report = _report()

    record = await store.save_report(FINGERPRINT, report, render_markdown(report), "manifest")
    record.updated_at = datetime.now(timezone.utc) - timedelta(days=2)
    await db_session.commit()

    assert await store.get_report(FINGERPRINT) is None
    # Still in the table; a fresh save revives it
    await store.save_report(FINGERPRINT, report, render_markdown(report), "manifest")
    await db_session.commit()
    assert await store.get_report(FINGERPRINT) is not None


@pytest.mark.asyncio
async def test_save_report_updates_existing_record(db_session: AsyncSession):
    store = ReportStore(db_session)

    first = await store.save_report(FINGERPRINT, _report(), "first", "manifest")
    await db_session.commit()
    second = await store.save_report(FINGERPRINT, _report(critical=False), "second", "source")
    await db_session.commit()

    assert first.id == second.id
    record = await store.get_report(FINGERPRINT)
    assert record.markdown == "second"
    assert record.source == "source"
    assert record.critical_count == 0


@pytest.mark.asyncio
async def test_delete_report(db_session: AsyncSession):
    store = ReportStore(db_session)
    await store.save_report(FINGERPRINT, _report(), "markdown", "manifest")
    await db_session.commit()

    assert await store.delete_report(FINGERPRINT) is True
    await db_session.commit()
    assert await store.get_report(FINGERPRINT) is None
    assert await store.delete_report(FINGERPRINT) is False
