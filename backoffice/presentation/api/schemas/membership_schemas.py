"""Pydantic schemas for membership API endpoints."""

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, EmailStr, Field


class CreateMembershipRequest(BaseModel):
    customer_email: EmailStr
    customer_name: Optional[str] = Field(default=None, max_length=200)
    product_name: str = Field(..., min_length=1, max_length=200)
    start_date: datetime
    end_date: datetime
    delayed_start_date: Optional[datetime] = None
    status: str = Field(default="active")
    parent_order_id: Optional[str] = None


class UpdateMembershipStatusRequest(BaseModel):
    status: str


class UpdateMembershipDatesRequest(BaseModel):
    """Omitted fields are left as they are; ``delayed_start_date: null`` clears it."""

    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    delayed_start_date: Optional[datetime] = None

    def to_changes(self) -> Dict[str, Any]:
        changes: Dict[str, Any] = {"start_date": self.start_date, "end_date": self.end_date}
        if "delayed_start_date" in self.model_fields_set:
            changes["delayed_start_date"] = self.delayed_start_date
        return changes


class BulkMembershipDatesItem(UpdateMembershipDatesRequest):
    id: str = Field(..., min_length=1)

    def to_changes(self) -> Dict[str, Any]:
        changes = super().to_changes()
        changes["id"] = self.id
        return changes


class BulkUpdateMembershipDatesRequest(BaseModel):
    items: List[BulkMembershipDatesItem] = Field(..., min_length=1, max_length=500)


class TransferMembershipRequest(BaseModel):
    new_email: EmailStr


class LinkSubscriptionRequest(BaseModel):
    subscription_id: str = Field(..., min_length=1)
