"""Pydantic schemas for organizations and their members."""
from typing import Optional

from pydantic import BaseModel, Field


class OrganizationCreate(BaseModel):
    """Schema for creating an organization; the caller becomes its admin."""

    name: str = Field(..., min_length=1, description="School name")
    contact_email: Optional[str] = Field(
        default=None, description="Address lifecycle notifications are sent to"
    )
    currency: Optional[str] = Field(
        default=None, min_length=3, max_length=3, description="Billing currency"
    )


class MemberAdd(BaseModel):
    member_id: str = Field(..., min_length=1, description="Identifier of the joining teacher")
    email: Optional[str] = None
