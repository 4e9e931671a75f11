"""
Pydantic schemas for request/response validation.

This module contains:
- Request models for incoming bodies
- Response models for API responses

Request models only check types. Presence of required fields is checked by
the route handlers so that empty values are rejected the same way as missing
ones.
"""

from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


# =============================================================================
# Pydantic Request Models
# =============================================================================

def coerce_phone(v: Any) -> Any:
    """Phones sent as JSON numbers are stored as their decimal text. Zero stays
    a number so it fails validation like any other empty phone."""
    if isinstance(v, (int, float)) and not isinstance(v, bool) and v:
        return str(int(v)) if float(v).is_integer() else str(v)
    return v


class LoginRequest(BaseModel):
    """Body of POST /api/login."""
    phone: Optional[str] = Field(None, description="User phone number, any format")

    @field_validator("phone", mode="before")
    @classmethod
    def phone_as_text(cls, v: Any) -> Any:
        return coerce_phone(v)


class DealCreateRequest(BaseModel):
    """Body of POST /api/deals. stage_index is not accepted; new deals start at 0."""
    name: Optional[str] = Field(None, description="Deal title")
    amount: Optional[float] = Field(None, description="Deal amount")
    currency: Optional[str] = Field(None, description="Currency symbol, defaults to '$'")
    created_by: Optional[str] = Field(None, description="Phone of the creating user")

    @field_validator("created_by", mode="before")
    @classmethod
    def phone_as_text(cls, v: Any) -> Any:
        return coerce_phone(v)

    model_config = {
        "json_schema_extra": {
            "examples": [
                {
                    "name": "Test",
                    "amount": 100,
                    "currency": "$",
                    "created_by": "79001234567",
                }
            ]
        }
    }


class DealUpdate(BaseModel):
    """
    Patch for PUT /api/deals/{id}.

    Each field is independently optional. A field is applied when it appears
    in the body, including an explicit null; absent fields are left alone.
    """
    name: Optional[str] = None
    amount: Optional[float] = None
    currency: Optional[str] = None
    stage_index: Optional[int] = None
    buyer_phone: Optional[str] = None
    supplier_phone: Optional[str] = None

    @field_validator("buyer_phone", "supplier_phone", mode="before")
    @classmethod
    def phone_as_text(cls, v: Any) -> Any:
        return coerce_phone(v)

    def changes(self) -> dict[str, Any]:
        """Fields that were supplied in the request body."""
        return self.model_dump(exclude_unset=True)


class MessageCreateRequest(BaseModel):
    """Body of POST /api/messages."""
    deal_id: Optional[int] = Field(None, description="Deal the message belongs to")
    sender: Optional[str] = Field(None, description="Phone of the sending user")
    text: Optional[str] = Field(None, description="Message text")

    @field_validator("sender", mode="before")
    @classmethod
    def phone_as_text(cls, v: Any) -> Any:
        return coerce_phone(v)


# =============================================================================
# Pydantic Response Models
# =============================================================================

class UserResponse(BaseModel):
    phone: str
    name: Optional[str] = None
    created_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class DealResponse(BaseModel):
    """A deal row as stored, including the unused transfer flag."""
    id: int
    name: str
    amount: float
    currency: Optional[str] = None
    stage_index: Optional[int] = None
    buyer_phone: Optional[str] = None
    supplier_phone: Optional[str] = None
    created_by: str
    transfer: Optional[int] = None
    created_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class MessageResponse(BaseModel):
    id: int
    deal_id: int
    sender: str
    text: str
    timestamp: Optional[datetime] = None
    is_read: Optional[int] = None

    model_config = ConfigDict(from_attributes=True)


class LoginResponse(BaseModel):
    status: str = "ok"
    user: UserResponse


class UsersListResponse(BaseModel):
    status: str = "ok"
    users: list[UserResponse] = Field(default_factory=list)


class DealEnvelope(BaseModel):
    """Single deal wrapped for create and update responses."""
    status: str = "ok"
    deal: DealResponse


class DealsListResponse(BaseModel):
    status: str = "ok"
    deals: list[DealResponse] = Field(default_factory=list)


class DealDeletedResponse(BaseModel):
    status: str = "ok"
    id: int


class MessageEnvelope(BaseModel):
    status: str = "ok"
    message: MessageResponse


class MessagesListResponse(BaseModel):
    """Messages of one deal, oldest first."""
    status: str = "ok"
    messages: list[MessageResponse] = Field(default_factory=list)


class RootResponse(BaseModel):
    status: str = "ok"
    message: str


class ErrorResponse(BaseModel):
    """Response model for error responses."""
    error: str = Field(..., description="Error description")


class HealthResponse(BaseModel):
    """Response model for health check endpoints."""
    status: str = Field(..., description="Health status")
    reason: Optional[str] = Field(None, description="Reason if not ready")
