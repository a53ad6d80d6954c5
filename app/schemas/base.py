"""
Base Schema Classes for Pydantic Models

RULE: All response schemas that read from ORM rows (`from_attributes=True`)
MUST inherit from BaseResponseSchema; request bodies inherit from
BaseCreateSchema or BaseUpdateSchema.
"""

from datetime import datetime
from decimal import Decimal
from uuid import UUID
from pydantic import BaseModel, ConfigDict


class BaseResponseSchema(BaseModel):
    """
    Base class for all response schemas that read from ORM models.

    Usage:
        class DeliveryRunResponse(BaseResponseSchema):
            id: UUID
            run_number: str
    """
    model_config = ConfigDict(
        from_attributes=True,
        json_encoders={
            UUID: str,
            datetime: lambda v: v.isoformat() if v else None,
            Decimal: float,
        },
        populate_by_name=True,
    )


class BaseCreateSchema(BaseModel):
    """
    Base class for create/input schemas.

    Accepts string UUIDs from the UI and converts them to UUID objects.
    """
    model_config = ConfigDict(
        # Allow extra fields to be ignored (forward compatibility)
        extra='ignore',
    )


class BaseUpdateSchema(BaseModel):
    """
    Base class for update/patch schemas.

    All fields are optional by default for partial updates.
    """
    model_config = ConfigDict(
        extra='ignore',
    )

