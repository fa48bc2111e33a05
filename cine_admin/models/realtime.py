"""Change notification models for the realtime feed."""

from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field


class ChangeType(str, Enum):
    """Kind of row change pushed by the database."""

    INSERT = "INSERT"
    UPDATE = "UPDATE"
    DELETE = "DELETE"


class ChangeEvent(BaseModel):
    """A single row change on one table."""

    event_type: ChangeType
    table: str
    schema_name: str = Field(default="public")
    new: Optional[Dict[str, Any]] = Field(
        default=None, description="Row after the change (None for deletes)"
    )
    old: Optional[Dict[str, Any]] = Field(
        default=None, description="Row before the change (None for inserts)"
    )
    commit_timestamp: Optional[datetime] = None

    def affected_id(self, primary_key: str) -> Any:
        """Primary key of the changed row, from the new row or else the old one.

        Args:
            primary_key: Primary key column of the table

        Returns:
            Key value or None when neither row carries it
        """
        for row in (self.new, self.old):
            if row and row.get(primary_key) is not None:
                return row[primary_key]
        return None
