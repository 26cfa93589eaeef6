"""
FastAPI Application Entry Point

Food Delivery Marketplace API.
Supports both the in-memory gateway (development/tests) and PostgreSQL.

Endpoints:
    - POST /api/auth/register | login | google | refresh: Public auth
    - POST /api/auth/logout | logout-all: Session revocation
    - POST /api/orders: Place an order
    - GET /api/orders: List my orders
    - GET /api/orders/{id}: Order details
    - PATCH /api/orders/{id}/status: Move an order through its workflow
    - GET /api/restaurants/{id}/orders: Restaurant order board
    - POST /api/maintenance/ratings/recalculate: Trigger rating job
    - GET /health: System health check

Author: Khalil Bannouri
Version: 1.0.0
"""

import asyncio
import logging
import sys
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, Optional

import redis
from fastapi import Depends, FastAPI, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

# Windows-specific event loop policy
if sys.platform == "win32":
    asyncio.set_event_loop_policy(asyncio.WindowsSelectorEventLoopPolicy())

# Internal imports
from foodhub.core.config import get_settings, setup_logging
from foodhub.core.errors import AuthenticationError, ForbiddenError, FoodhubError
from foodhub.models import OrderStatus, UserRole
from foodhub.schemas import (
    AuthData,
    AuthResponse,
    ErrorResponse,
    GoogleAuthRequest,
    HealthResponse,
    LoginRequest,
    LogoutAllData,
    LogoutAllResponse,
    MessageResponse,
    OrderCreate,
    OrderEnvelope,
    OrderListResponse,
    OrderResponse,
    OrderStatusUpdate,
    PaginationResponse,
    RatingRunData,
    RatingRunResponse,
    RefreshData,
    RefreshResponse,
    RefreshTokenRequest,
    RegisterRequest,
    TokenPairResponse,
    UserResponse,
)
from foodhub.services import Services, get_services
from foodhub.services.accounts import AuthResult
from foodhub.services.orders import OrderLine, PlaceOrderRequest
from foodhub.storage.base import OrderFilter, OrderRecord, OrderSortField, Page, PageRequest, UserRecord
from foodhub.tasks import recompute_restaurant_ratings

# Initialize configuration and logging
settings = get_settings()
setup_logging()
logger = logging.getLogger(__name__)

bearer_scheme = HTTPBearer(auto_error=False)


# =============================================================================
# APPLICATION LIFECYCLE
# =============================================================================

@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Manage application startup and shutdown events.
    """
    # Startup
    logger.info("=" * 60)
    logger.info(f"🚀 Starting {settings.app_name}")
    logger.info(f"   Version: {settings.app_version}")
    logger.info(f"   Environment: {settings.env_mode.value}")
    logger.info(f"   Debug: {settings.debug}")
    logger.info("=" * 60)

    services = get_services()

    # Initialize storage
    await services.gateway.initialize()
    logger.info(f"✅ Storage initialized ({services.gateway.provider_name})")

    # Validate production config
    problems = settings.validate_production_config()
    if problems:
        logger.warning(f"⚠️ Insecure or missing config: {problems}")

    logger.info("=" * 60)
    logger.info("✅ Application ready!")
    logger.info("=" * 60)

    yield  # Application runs

    # Shutdown
    logger.info("Shutting down...")
    await services.gateway.close()
    logger.info("✅ Cleanup complete")


# =============================================================================
# APPLICATION INSTANCE
# =============================================================================

app = FastAPI(
    title=settings.app_name,
    description=(
        "Food delivery marketplace backend: atomic order placement, "
        "order workflow and rotating refresh-token sessions."
    ),
    version=settings.app_version,
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# =============================================================================
# DEPENDENCIES
# =============================================================================

async def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
    services: Services = Depends(get_services),
) -> UserRecord:
    """Resolve the bearer access token to the calling user."""
    if credentials is None or not credentials.credentials:
        raise AuthenticationError("Authentication required")
    return await services.accounts.authenticate_access_token(credentials.credentials)


async def require_admin(user: UserRecord = Depends(get_current_user)) -> UserRecord:
    if user.role != UserRole.ADMIN:
        raise ForbiddenError("Admin access required")
    return user


def page_request(
    page: int = Query(1, ge=1),
    limit: int = Query(settings.default_page_size, ge=1, le=settings.max_page_size),
) -> PageRequest:
    return PageRequest(page=page, limit=limit)


def order_filter(
    status: Optional[OrderStatus] = Query(None),
    start_date: Optional[datetime] = Query(None, description="Placed at or after"),
    end_date: Optional[datetime] = Query(None, description="Placed at or before"),
    sort_by: OrderSortField = Query(OrderSortField.PLACED_AT),
    sort_order: str = Query("desc", pattern="^(asc|desc)$"),
) -> OrderFilter:
    return OrderFilter(
        status=status,
        placed_from=start_date,
        placed_to=end_date,
        sort_by=sort_by,
        descending=sort_order == "desc",
    )


# =============================================================================
# HELPER FUNCTIONS
# =============================================================================

def device_info(request: Request) -> Optional[str]:
    return request.headers.get("user-agent")


def auth_response(result: AuthResult) -> AuthResponse:
    return AuthResponse(
        message=result.message,
        data=AuthData(
            user=UserResponse.model_validate(result.user),
            tokens=TokenPairResponse.model_validate(result.tokens),
        ),
    )


def order_list_response(page: Page[OrderRecord]) -> OrderListResponse:
    return OrderListResponse(
        data=[OrderResponse.model_validate(order) for order in page.items],
        pagination=PaginationResponse(
            page=page.page,
            limit=page.limit,
            total=page.total,
            total_pages=page.total_pages,
        ),
    )


# =============================================================================
# ROOT & HEALTH ENDPOINTS
# =============================================================================

@app.get("/", tags=["Root"])
async def root() -> dict[str, str]:
    """API root with navigation links."""
    return {
        "message": f"🍕 Welcome to {settings.app_name}",
        "version": settings.app_version,
        "environment": settings.env_mode.value,
        "documentation": "/docs",
        "health": "/health",
    }


@app.get(
    "/health",
    response_model=HealthResponse,
    tags=["Health"],
    summary="System Health Check",
)
async def health_check(services: Services = Depends(get_services)) -> HealthResponse:
    """Verify all system components are operational."""

    # Check database
    db_status = "healthy"
    try:
        if not await services.gateway.health_check():
            db_status = "unhealthy"
    except Exception as e:
        db_status = f"unhealthy: {str(e)}"
        logger.error(f"Database health check failed: {e}")

    # Check Redis
    redis_status = "healthy"
    try:
        r = redis.Redis.from_url(settings.redis_url, socket_timeout=2)
        r.ping()
        r.close()
    except Exception as e:
        redis_status = f"unhealthy: {str(e)}"
        logger.error(f"Redis health check failed: {e}")

    overall = "operational" if all(
        s == "healthy" for s in [db_status, redis_status]
    ) else "degraded"

    return HealthResponse(
        status=overall,
        database=db_status,
        redis=redis_status,
        storage_backend=services.gateway.provider_name,
        timestamp=datetime.now(timezone.utc),
    )


# =============================================================================
# AUTH ENDPOINTS
# =============================================================================

@app.post(
    "/api/auth/register",
    response_model=AuthResponse,
    status_code=201,
    responses={409: {"model": ErrorResponse}},
    tags=["Auth"],
)
async def register(
    body: RegisterRequest,
    request: Request,
    services: Services = Depends(get_services),
) -> AuthResponse:
    result = await services.accounts.register(
        email=body.email,
        password=body.password,
        name=body.name,
        phone_number=body.phone_number,
        address=body.address,
        device_info=device_info(request),
    )
    return auth_response(result)


@app.post(
    "/api/auth/login",
    response_model=AuthResponse,
    responses={401: {"model": ErrorResponse}, 403: {"model": ErrorResponse}},
    tags=["Auth"],
)
async def login(
    body: LoginRequest,
    request: Request,
    services: Services = Depends(get_services),
) -> AuthResponse:
    result = await services.accounts.login(body.email, body.password, device_info(request))
    return auth_response(result)


@app.post(
    "/api/auth/google",
    response_model=AuthResponse,
    tags=["Auth"],
)
async def google_auth(
    body: GoogleAuthRequest,
    request: Request,
    services: Services = Depends(get_services),
) -> AuthResponse:
    result = await services.accounts.authenticate_external(
        email=body.email,
        google_id=body.google_id,
        name=body.name,
        phone_number=body.phone_number,
        address=body.address,
        device_info=device_info(request),
    )
    return auth_response(result)


@app.post(
    "/api/auth/refresh",
    response_model=RefreshResponse,
    responses={401: {"model": ErrorResponse}},
    tags=["Auth"],
)
async def refresh_token(
    body: RefreshTokenRequest,
    request: Request,
    services: Services = Depends(get_services),
) -> RefreshResponse:
    """Rotate a refresh token. The presented token stops working."""
    tokens = await services.ledger.rotate(body.refresh_token, device_info(request))
    return RefreshResponse(data=RefreshData(tokens=TokenPairResponse.model_validate(tokens)))


@app.post(
    "/api/auth/logout",
    response_model=MessageResponse,
    tags=["Auth"],
)
async def logout(
    body: RefreshTokenRequest,
    user: UserRecord = Depends(get_current_user),
    services: Services = Depends(get_services),
) -> MessageResponse:
    await services.ledger.revoke(body.refresh_token, user.id)
    return MessageResponse(message="Logged out successfully")


@app.post(
    "/api/auth/logout-all",
    response_model=LogoutAllResponse,
    tags=["Auth"],
)
async def logout_all(
    user: UserRecord = Depends(get_current_user),
    services: Services = Depends(get_services),
) -> LogoutAllResponse:
    count = await services.ledger.revoke_all(user.id)
    return LogoutAllResponse(
        message="Logged out from all devices successfully",
        data=LogoutAllData(revoked_tokens_count=count),
    )


# =============================================================================
# ORDER API ENDPOINTS
# =============================================================================

@app.post(
    "/api/orders",
    response_model=OrderEnvelope,
    status_code=201,
    responses={
        400: {"model": ErrorResponse},
        404: {"model": ErrorResponse},
        500: {"model": ErrorResponse},
    },
    tags=["Orders"],
    summary="Place Order",
)
async def create_order(
    order_data: OrderCreate,
    user: UserRecord = Depends(get_current_user),
    services: Services = Depends(get_services),
) -> OrderEnvelope:
    """
    Place a new order.

    Prices are taken from the live menu; the client only sends dish ids
    and quantities.
    """
    logger.info(f"Placing order for user {user.id} at restaurant {order_data.restaurant_id}")

    order = await services.placement.place_order(
        PlaceOrderRequest(
            user_id=user.id,
            restaurant_id=order_data.restaurant_id,
            items=[
                OrderLine(
                    dish_id=item.dish_id,
                    quantity=item.quantity,
                    special_instructions=item.special_instructions,
                )
                for item in order_data.items
            ],
            delivery_address=order_data.delivery_address,
            delivery_instructions=order_data.delivery_instructions,
        )
    )
    return OrderEnvelope(
        message="Order placed successfully",
        data=OrderResponse.model_validate(order),
    )


@app.get(
    "/api/orders",
    response_model=OrderListResponse,
    tags=["Orders"],
    summary="List My Orders",
)
async def list_orders(
    filters: OrderFilter = Depends(order_filter),
    page: PageRequest = Depends(page_request),
    user: UserRecord = Depends(get_current_user),
    services: Services = Depends(get_services),
) -> OrderListResponse:
    """Retrieve the caller's orders, newest first by default."""
    result = await services.queries.list_user_orders(user, filters, page)
    return order_list_response(result)


@app.get(
    "/api/orders/{order_id}",
    response_model=OrderEnvelope,
    responses={403: {"model": ErrorResponse}, 404: {"model": ErrorResponse}},
    tags=["Orders"],
)
async def get_order(
    order_id: int,
    user: UserRecord = Depends(get_current_user),
    services: Services = Depends(get_services),
) -> OrderEnvelope:
    """Get a specific order with its items."""
    order = await services.queries.get_order(order_id, user)
    return OrderEnvelope(data=OrderResponse.model_validate(order))


@app.patch(
    "/api/orders/{order_id}/status",
    response_model=OrderEnvelope,
    responses={
        400: {"model": ErrorResponse},
        403: {"model": ErrorResponse},
        404: {"model": ErrorResponse},
    },
    tags=["Orders"],
)
async def update_order_status(
    order_id: int,
    body: OrderStatusUpdate,
    user: UserRecord = Depends(get_current_user),
    services: Services = Depends(get_services),
) -> OrderEnvelope:
    order = await services.statuses.update_status(
        order_id,
        body.status,
        actor=user,
        estimated_delivery_time=body.estimated_delivery_time,
        actual_delivery_time=body.actual_delivery_time,
    )
    return OrderEnvelope(
        message="Order status updated successfully",
        data=OrderResponse.model_validate(order),
    )


@app.get(
    "/api/restaurants/{restaurant_id}/orders",
    response_model=OrderListResponse,
    responses={403: {"model": ErrorResponse}, 404: {"model": ErrorResponse}},
    tags=["Orders"],
)
async def list_restaurant_orders(
    restaurant_id: int,
    filters: OrderFilter = Depends(order_filter),
    page: PageRequest = Depends(page_request),
    user: UserRecord = Depends(get_current_user),
    services: Services = Depends(get_services),
) -> OrderListResponse:
    result = await services.queries.list_restaurant_orders(restaurant_id, user, filters, page)
    return order_list_response(result)


# =============================================================================
# MAINTENANCE ENDPOINTS
# =============================================================================

@app.post(
    "/api/maintenance/ratings/recalculate",
    response_model=RatingRunResponse,
    tags=["Maintenance"],
)
async def recalculate_ratings(
    background: bool = Query(False, description="Enqueue on the Celery worker instead"),
    admin: UserRecord = Depends(require_admin),
    services: Services = Depends(get_services),
) -> RatingRunResponse:
    """Recompute every restaurant's weighted average rating now."""
    if background:
        task = recompute_restaurant_ratings.delay()
        logger.info(f"Rating recalculation queued by user {admin.id}: task {task.id}")
        return RatingRunResponse(
            success=True,
            message="Restaurant rating calculation queued",
            task_id=task.id,
        )

    result = await services.ratings.run()
    return RatingRunResponse(
        success=result.success,
        message=result.message or "Restaurant rating calculation completed",
        data=RatingRunData(processed=result.processed, errors=result.errors),
    )


# =============================================================================
# ERROR HANDLERS
# =============================================================================

@app.exception_handler(FoodhubError)
async def foodhub_exception_handler(request: Request, exc: FoodhubError) -> JSONResponse:
    """Domain failures carry their own status code and public message."""
    if exc.status_code >= 500:
        logger.error(f"{exc.error_code}: {exc.message}")
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(
    request: Request,
    exc: RequestValidationError,
) -> JSONResponse:
    """Malformed requests are 400 with one message per field."""
    details: list[dict[str, Any]] = [
        {
            "field": ".".join(str(part) for part in error["loc"] if part != "body"),
            "message": error["msg"],
        }
        for error in exc.errors()
    ]
    return JSONResponse(
        status_code=400,
        content={
            "success": False,
            "error": "Validation failed",
            "code": "validation_error",
            "details": details,
        },
    )


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all exception handler."""
    logger.exception(f"Unhandled exception: {exc}")

    return JSONResponse(
        status_code=500,
        content={
            "success": False,
            "error": "Internal Server Error",
            "detail": str(exc) if settings.debug else "An unexpected error occurred",
        },
    )


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "foodhub.main:app",
        host=settings.api_host,
        port=settings.api_port,
        reload=settings.is_development,
    )
