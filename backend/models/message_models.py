# models/message_models.py
from pydantic import BaseModel, Field, field_validator
from typing import Literal, Optional
from datetime import datetime
from enum import Enum


class MessageStatus(str, Enum):
    PENDING = "PENDING"
    SENT = "SENT"
    DELIVERED = "DELIVERED"
    FAILED = "FAILED"


TERMINAL_STATUSES = {MessageStatus.DELIVERED.value, MessageStatus.FAILED.value}


class VendorSendRequest(BaseModel):
    message_id: str = Field(..., min_length=1)
    customer_email: str = Field(..., min_length=1)
    customer_name: Optional[str] = ""
    message: str
    subject: Optional[str] = ""


class DeliveryReceiptRequest(BaseModel):
    message_id: str = Field(..., min_length=1)
    vendor_message_id: Optional[str] = None
    status: Literal["PENDING", "SENT", "DELIVERED", "FAILED"]
    delivered_at: Optional[datetime] = None
    error_message: Optional[str] = None

    @field_validator("status", mode="before")
    @classmethod
    def upper_status(cls, v):
        if isinstance(v, str):
            return v.strip().upper()
        return v


class DeliveryStatusUpdate(BaseModel):
    status: Literal["DELIVERED", "FAILED"]
    delivered_at: Optional[datetime] = None
    error_message: Optional[str] = None

    @field_validator("status", mode="before")
    @classmethod
    def upper_status(cls, v):
        if isinstance(v, str):
            return v.strip().upper()
        return v


class MessageCreate(BaseModel):
    customer_id: str = Field(..., min_length=1)
    message: str = Field(..., min_length=1)
    subject: Optional[str] = "Message"
    discount_percentage: Optional[float] = Field(default=None, ge=0, le=100)
