"""
Pydantic schemas for request/response validation.

This module contains:
- Request models for incoming data validation
- Response models for API responses
"""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field


# Range of the INTEGER columns (32-bit signed on PostgreSQL)
INT_MIN = -2**31
INT_MAX = 2**31 - 1


# =============================================================================
# Pydantic Request Models
# =============================================================================

class MessageCreate(BaseModel):
    """
    Body of POST /api/messages.

    message, sender and group_name must be non-empty. item_id and amount are
    optional; absent or null is stored as NULL, 0 is stored as 0.
    """
    message: str = Field(..., min_length=1, description="Message text")
    sender: str = Field(..., min_length=1, max_length=255, description="Who posted the message")
    group_name: str = Field(..., min_length=1, max_length=255, description="Group the message belongs to")
    item_id: Optional[int] = Field(None, ge=INT_MIN, le=INT_MAX, description="Related item, if any")
    amount: Optional[int] = Field(None, ge=INT_MIN, le=INT_MAX, description="Related amount, if any")

    model_config = {
        "json_schema_extra": {
            "examples": [
                {"message": "hi", "sender": "alice", "group_name": "g1"}
            ]
        }
    }


class TransactionCreate(BaseModel):
    """Body of POST /api/transactions. Every field is required."""
    item_id: int = Field(..., ge=INT_MIN, le=INT_MAX, description="Item identifier")
    item: str = Field(..., min_length=1, max_length=255, description="Item label")
    user: str = Field(..., min_length=1, max_length=255, description="Acting user")
    amount: int = Field(..., ge=INT_MIN, le=INT_MAX, description="Quantity moved; sign is up to the caller")
    group_name: str = Field(..., min_length=1, max_length=255, description="Group the transaction belongs to")

    model_config = {
        "json_schema_extra": {
            "examples": [
                {"item_id": 1, "item": "bolt", "user": "bob", "amount": 5, "group_name": "g1"}
            ]
        }
    }


# =============================================================================
# Pydantic Response Models
# =============================================================================

class MessageResponse(BaseModel):
    id: int
    message: str
    sender: str
    item_id: Optional[int] = None
    amount: Optional[int] = None
    group_name: str
    created_at: datetime

    model_config = {"from_attributes": True}


class TransactionResponse(BaseModel):
    id: int
    item_id: int
    item: str
    user: str
    amount: int
    group_name: str
    created_at: datetime

    model_config = {"from_attributes": True}


class DeleteResponse(BaseModel):
    success: bool = True
    message: str = "Message deleted"


class ErrorResponse(BaseModel):
    """Response model for error responses."""
    detail: str = Field(..., description="Error description")


class HealthResponse(BaseModel):
    """Response model for health check endpoints."""
    status: str = Field(..., description="Health status")
    timestamp: Optional[datetime] = Field(None, description="Server time")
    reason: Optional[str] = Field(None, description="Reason if not ready")
