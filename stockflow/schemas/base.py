"""
Base Schema Classes for Pydantic Models

RULE: All response schemas that read from ORM models or service result
dataclasses MUST inherit from BaseResponseSchema.
"""

from datetime import datetime
from uuid import UUID
from pydantic import BaseModel, ConfigDict


class BaseResponseSchema(BaseModel):
    """
    Base class for response schemas built from ORM rows and service results.

    Features:
    - Automatically handles UUID → string serialization in JSON
    - Enables from_attributes, so properties such as stock_status are read too
    - Consistent datetime serialization

    Usage:
        class LedgerRecordResponse(BaseResponseSchema):
            id: UUID
            quantity_available: int
    """
    model_config = ConfigDict(
        from_attributes=True,
        json_encoders={
            UUID: str,
            datetime: lambda v: v.isoformat() if v else None,
        },
        populate_by_name=True,
    )


class BaseCreateSchema(BaseModel):
    """
    Base class for create/input schemas.

    Accepts string UUIDs and converts them to UUID objects.
    """
    model_config = ConfigDict(
        # Allow extra fields to be ignored (forward compatibility)
        extra='ignore',
    )

