import logging
from typing import Optional
from datetime import datetime, timedelta, timezone
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, delete

from mcp_validator.core.config import settings
from mcp_validator.models.validation_record import ValidationRecord
from mcp_validator.schemas.report import Severity, ValidationReport

logger = logging.getLogger(__name__)


def _as_utc(value: datetime) -> datetime:
    # SQLite hands back naive datetimes even for timezone-aware columns
    return value if value.tzinfo else value.replace(tzinfo=timezone.utc)


class ReportStore:
    def __init__(self, session: AsyncSession, ttl_days: Optional[int] = None):
        self.session = session
        self.ttl = timedelta(days=settings.REPORT_TTL_DAYS if ttl_days is None else ttl_days)

    async def get_report(self, fingerprint: str) -> Optional[ValidationRecord]:
        """
        Retrieve a stored report if it exists and is younger than the TTL.

        Args:
            fingerprint: Fingerprint of the validated server descriptors.

        Returns:
            The stored record if found and fresh, None otherwise.

        Note:
            This method does NOT commit the session. Transaction management
            is handled by the calling route.
        """
        try:
            stmt = select(ValidationRecord).where(ValidationRecord.fingerprint == fingerprint)
            result = await self.session.execute(stmt)
            record = result.scalar_one_or_none()

            if not record:
                logger.debug(f"No stored report for {fingerprint}")
                return None

            age = datetime.now(timezone.utc) - _as_utc(record.updated_at)
            if age > self.ttl:
                logger.info(f"Stored report expired for {fingerprint} (age: {age})")
                return None

            logger.info(f"Stored report hit for {fingerprint} (age: {age})")
            return record

        except Exception as e:
            logger.error(f"Error retrieving stored report for {fingerprint}: {e}", exc_info=True)
            # Do NOT rollback here - let the caller handle transaction state
            return None

    async def save_report(
        self,
        fingerprint: str,
        report: ValidationReport,
        markdown: str,
        source: str,
    ) -> ValidationRecord:
        """
        Save or update a rendered report.

        Note:
            This method does NOT commit the session. It only adds/updates the
            record and flushes. The calling route is responsible for committing.

        Raises:
            Exception: Re-raises any database errors for the caller to handle.
        """
        try:
            stmt = select(ValidationRecord).where(ValidationRecord.fingerprint == fingerprint)
            result = await self.session.execute(stmt)
            record = result.scalar_one_or_none()

            payload = report.model_dump(mode="json")
            critical = report.severity_counts.get(Severity.CRITICAL, 0)

            if record:
                record.server_name = report.server_name
                record.source = source
                record.report = payload
                record.markdown = markdown
                record.critical_count = critical
                record.updated_at = datetime.now(timezone.utc)
                logger.info(f"Updated stored report for {fingerprint}")
            else:
                record = ValidationRecord(
                    fingerprint=fingerprint,
                    server_name=report.server_name,
                    source=source,
                    report=payload,
                    markdown=markdown,
                    critical_count=critical,
                )
                self.session.add(record)
                logger.info(f"Stored new report for {fingerprint}")

            # Stage the write; the route commits when the request succeeds
            await self.session.flush()
            return record

        except Exception as e:
            logger.error(f"Error storing report for {fingerprint}: {e}", exc_info=True)
            raise

    async def delete_report(self, fingerprint: str) -> bool:
        """Remove a stored report. Returns True if a record was deleted."""
        stmt = delete(ValidationRecord).where(ValidationRecord.fingerprint == fingerprint)
        result = await self.session.execute(stmt)
        return result.rowcount > 0
