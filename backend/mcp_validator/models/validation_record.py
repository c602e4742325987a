from datetime import datetime
from typing import Any, Dict
from sqlalchemy import String, Integer, Text, JSON, DateTime
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.sql import func
from mcp_validator.db.base import Base

class ValidationRecord(Base):
    """
    SQLAlchemy model storing one rendered validation report.
    Keyed by the fingerprint of the validated descriptor set, so identical
    servers share a single record.
    """
    __tablename__ = "validation_records"
    # Load server-generated timestamps right after INSERT/UPDATE
    __mapper_args__ = {"eager_defaults": True}

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)

    # SHA-256 of the canonical ServerDescriptor JSON
    fingerprint: Mapped[str] = mapped_column(String(64), unique=True, index=True)

    server_name: Mapped[str] = mapped_column(String)

    # Where the descriptors came from: 'manifest', 'source' or a repository URL
    source: Mapped[str] = mapped_column(String)

    # ValidationReport serialized with model_dump(mode="json")
    report: Mapped[Dict[str, Any]] = mapped_column(JSON)

    # Rendered Markdown text
    markdown: Mapped[str] = mapped_column(Text)

    critical_count: Mapped[int] = mapped_column(Integer, default=0)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )
