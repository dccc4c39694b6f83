"""Pydantic schemas for subscription API endpoints."""

from datetime import datetime
from typing import List, Literal, Optional

from pydantic import BaseModel, EmailStr, Field

SubscriptionType = Literal["product", "extension"]


class RegisterSubscriptionRequest(BaseModel):
    """Subscription created by the order flow, recorded in the back office."""

    type: SubscriptionType
    catalog_item_id: str = Field(..., min_length=1, max_length=120)
    customer_email: EmailStr
    customer_name: Optional[str] = Field(default=None, max_length=200)
    membership_id: Optional[str] = None
    remaining_payments: int = Field(default=0, ge=0)
    next_payment_date: Optional[datetime] = None
    stripe_customer_id: Optional[str] = None
    stripe_payment_method_id: Optional[str] = None
    stripe_subscription_id: Optional[str] = None
    installment_amount_cents: Optional[int] = Field(default=None, gt=0)
    currency: Optional[str] = Field(default=None, min_length=3, max_length=3)


class ReschedulePaymentRequest(BaseModel):
    type: SubscriptionType = "product"
    new_payment_date: datetime


class BulkRescheduleItem(BaseModel):
    id: str = Field(..., min_length=1)
    new_payment_date: datetime


class BulkReschedulePaymentsRequest(BaseModel):
    type: SubscriptionType = "product"
    items: List[BulkRescheduleItem] = Field(..., min_length=1, max_length=500)


class CancelSubscriptionRequest(BaseModel):
    mode: Literal["graceful", "immediate"]
