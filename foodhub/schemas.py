"""
Pydantic Schemas for Request/Response Validation

Request bodies are validated here before they reach the services.
Money leaves the API as a string with exactly two decimals,
so clients never see binary float drift.

Author: Khalil Bannouri
Version: 1.0.0
"""

import re
from datetime import datetime
from decimal import Decimal
from typing import Annotated, Any, List, Optional

from pydantic import BaseModel, EmailStr, Field, PlainSerializer, field_validator

from foodhub.models import OrderStatus, UserRole


Money = Annotated[Decimal, PlainSerializer(lambda v: f"{v:.2f}", return_type=str)]

PASSWORD_PATTERN = re.compile(r"^(?=.*[a-z])(?=.*[A-Z])(?=.*\d)")


# =============================================================================
# AUTH REQUEST SCHEMAS
# =============================================================================

class RegisterRequest(BaseModel):
    """Email/password registration."""
    email: EmailStr = Field(..., examples=["ana@example.com"])
    password: str = Field(..., min_length=8, max_length=128)
    name: str = Field(..., min_length=1, max_length=200, examples=["Ana Lopez"])
    phone_number: Optional[str] = Field(None, max_length=20)
    address: Optional[str] = None

    @field_validator("password")
    @classmethod
    def validate_password(cls, v: str) -> str:
        if not PASSWORD_PATTERN.match(v):
            raise ValueError(
                "Password must contain at least one lowercase letter, "
                "one uppercase letter, and one number"
            )
        return v


class GoogleAuthRequest(BaseModel):
    """Google sign-in; name is only required for new accounts."""
    email: EmailStr
    google_id: str = Field(..., min_length=1)
    name: Optional[str] = Field(None, max_length=200)
    phone_number: Optional[str] = Field(None, max_length=20)
    address: Optional[str] = None


class LoginRequest(BaseModel):
    email: EmailStr
    password: str = Field(..., min_length=1)


class RefreshTokenRequest(BaseModel):
    refresh_token: str = Field(..., min_length=1)


# =============================================================================
# AUTH RESPONSE SCHEMAS
# =============================================================================

class UserResponse(BaseModel):
    """Public view of a user (no credential material)."""
    id: int
    email: str
    name: str
    phone_number: Optional[str]
    address: Optional[str]
    role: UserRole
    restaurant_id: Optional[int]
    is_active: bool
    created_at: Optional[datetime]

    class Config:
        from_attributes = True


class TokenPairResponse(BaseModel):
    access_token: str
    refresh_token: str
    token_type: str = "bearer"
    refresh_expires_at: datetime

    class Config:
        from_attributes = True


class AuthData(BaseModel):
    user: UserResponse
    tokens: TokenPairResponse


class AuthResponse(BaseModel):
    success: bool = True
    message: str
    data: AuthData


class RefreshData(BaseModel):
    tokens: TokenPairResponse


class RefreshResponse(BaseModel):
    success: bool = True
    message: str = "Token refreshed successfully"
    data: RefreshData


class LogoutAllData(BaseModel):
    revoked_tokens_count: int


class MessageResponse(BaseModel):
    success: bool = True
    message: str


class LogoutAllResponse(MessageResponse):
    data: LogoutAllData


# =============================================================================
# ORDER REQUEST SCHEMAS
# =============================================================================

MAX_LINE_QUANTITY = 100
MAX_ORDER_LINES = 50


class OrderItemCreate(BaseModel):
    """Single line in a new order."""
    dish_id: int = Field(..., gt=0, examples=[12])
    quantity: int = Field(..., ge=1, le=MAX_LINE_QUANTITY, examples=[2])
    special_instructions: Optional[str] = Field(None, max_length=500)


class OrderCreate(BaseModel):
    """Request schema for placing a new order."""
    restaurant_id: int = Field(..., gt=0, examples=[3])
    items: List[OrderItemCreate] = Field(..., min_length=1, max_length=MAX_ORDER_LINES)
    delivery_address: str = Field(..., min_length=1, max_length=500)
    delivery_instructions: Optional[str] = Field(None, max_length=500)


class OrderStatusUpdate(BaseModel):
    status: OrderStatus
    estimated_delivery_time: Optional[datetime] = None
    actual_delivery_time: Optional[datetime] = None


# =============================================================================
# ORDER RESPONSE SCHEMAS
# =============================================================================

class RestaurantSummaryResponse(BaseModel):
    id: int
    name: str
    address: str
    phone_number: Optional[str]

    class Config:
        from_attributes = True


class OrderItemResponse(BaseModel):
    id: int
    dish_id: int
    dish_name: Optional[str]
    quantity: int
    price_at_order: Money
    subtotal: Money
    special_instructions: Optional[str]

    class Config:
        from_attributes = True


class OrderResponse(BaseModel):
    """Response schema for a single order."""
    id: int
    order_number: str
    user_id: int
    restaurant_id: int
    status: OrderStatus
    subtotal: Money
    delivery_fee: Money
    service_charge: Money
    tax_amount: Money
    total_amount: Money
    delivery_address: str
    delivery_instructions: Optional[str]
    estimated_delivery_time: Optional[datetime]
    actual_delivery_time: Optional[datetime]
    placed_at: datetime
    created_at: Optional[datetime]
    updated_at: Optional[datetime]
    items: List[OrderItemResponse] = []
    restaurant: Optional[RestaurantSummaryResponse] = None

    class Config:
        from_attributes = True


class OrderEnvelope(BaseModel):
    success: bool = True
    message: Optional[str] = None
    data: OrderResponse


class PaginationResponse(BaseModel):
    page: int
    limit: int
    total: int
    total_pages: int


class OrderListResponse(BaseModel):
    """Response for listing multiple orders."""
    success: bool = True
    data: List[OrderResponse]
    pagination: PaginationResponse


# =============================================================================
# MAINTENANCE SCHEMAS
# =============================================================================

class RatingRunData(BaseModel):
    processed: int
    errors: int


class RatingRunResponse(BaseModel):
    success: bool
    message: str
    data: Optional[RatingRunData] = None
    task_id: Optional[str] = None


# =============================================================================
# GENERIC SCHEMAS
# =============================================================================

class ErrorResponse(BaseModel):
    """Standard error response."""
    success: bool = False
    error: str
    code: Optional[str] = None
    details: Optional[Any] = None


class HealthResponse(BaseModel):
    """Health check response."""
    status: str
    database: str
    redis: str
    storage_backend: str
    timestamp: datetime
