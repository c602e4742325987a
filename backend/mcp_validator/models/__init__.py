from mcp_validator.db.base import Base
from mcp_validator.models.validation_record import ValidationRecord

__all__ = ["Base", "ValidationRecord"]
