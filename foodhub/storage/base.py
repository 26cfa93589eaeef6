"""
Persistence Gateway Abstract Base Classes

Defines the interface contract for all storage implementations.
Both MemoryGateway and SqlGateway implement these classes, so the
service layer behaves identically regardless of which one is active.

Design Pattern: Repository + Unit of Work
    - One repository per entity, with an explicit filter type per listing
    - A unit of work bundles the repositories of one transaction
    - gateway.transaction() commits on clean exit and rolls back on any
      exception raised inside the scope

Records are plain dataclasses. Money is Decimal, never float.

Author: Khalil Bannouri
Version: 1.0.0
"""

from __future__ import annotations

import math
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import AsyncContextManager, Generic, Optional, Sequence, TypeVar

from foodhub.core.errors import NotFoundError, StateConflictError
from foodhub.models import OrderStatus, UserRole


# =============================================================================
# RECORDS
# =============================================================================

@dataclass
class UserRecord:
    """
    A user account.

    Attributes:
        email: Normalised (lowercase) email address
        password_hash: bcrypt hash, None for external-identity-only accounts
        google_id: External identity id, None for password-only accounts
        role: customer / restaurant_staff / admin
        restaurant_id: Restaurant a staff member works for
        is_active: Gates every authentication path
    """
    email: str
    name: str
    password_hash: Optional[str] = None
    google_id: Optional[str] = None
    phone_number: Optional[str] = None
    address: Optional[str] = None
    role: UserRole = UserRole.CUSTOMER
    restaurant_id: Optional[int] = None
    is_active: bool = True
    id: Optional[int] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def has_credential(self) -> bool:
        return bool(self.password_hash) or bool(self.google_id)


@dataclass
class RefreshTokenRecord:
    """
    A stored refresh credential.

    Only the hash of the bearer secret is kept. Revocation is one-way.
    """
    token_hash: str
    user_id: int
    expires_at: datetime
    device_info: Optional[str] = None
    is_revoked: bool = False
    revoked_at: Optional[datetime] = None
    last_used_at: Optional[datetime] = None
    id: Optional[int] = None
    created_at: Optional[datetime] = None

    def is_expired(self, now: datetime) -> bool:
        return now > self.expires_at

    def is_valid(self, now: datetime) -> bool:
        return not self.is_revoked and not self.is_expired(now)


@dataclass
class RestaurantSummary:
    id: int
    name: str
    address: str
    phone_number: Optional[str] = None


@dataclass
class RestaurantRecord:
    name: str
    address: str
    minimum_order: Decimal = Decimal("0.00")
    delivery_fee: Decimal = Decimal("0.00")
    service_charge_rate: Decimal = Decimal("0")
    tax_rate: Decimal = Decimal("0")
    is_active: bool = True
    average_rating: Decimal = Decimal("0")
    rating_count: int = 0
    description: Optional[str] = None
    cuisine_type: Optional[str] = None
    city: Optional[str] = None
    phone_number: Optional[str] = None
    image_uri: Optional[str] = None
    id: Optional[int] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def summary(self) -> RestaurantSummary:
        return RestaurantSummary(
            id=self.id,
            name=self.name,
            address=self.address,
            phone_number=self.phone_number,
        )


@dataclass
class MenuCategoryRecord:
    restaurant_id: int
    name: str
    description: Optional[str] = None
    display_order: int = 0
    is_active: bool = True
    id: Optional[int] = None
    created_at: Optional[datetime] = None


@dataclass
class DishRecord:
    restaurant_id: int
    category_id: int
    name: str
    price: Decimal
    description: Optional[str] = None
    image_uri: Optional[str] = None
    is_available: bool = True
    average_rating: Decimal = Decimal("0")
    rating_count: int = 0
    id: Optional[int] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


@dataclass
class OrderItemRecord:
    """Immutable order line with its price snapshot."""
    dish_id: int
    quantity: int
    price_at_order: Decimal
    subtotal: Decimal
    special_instructions: Optional[str] = None
    order_id: Optional[int] = None
    dish_name: Optional[str] = None
    id: Optional[int] = None
    created_at: Optional[datetime] = None


@dataclass
class OrderRecord:
    order_number: str
    user_id: int
    restaurant_id: int
    subtotal: Decimal
    delivery_fee: Decimal
    service_charge: Decimal
    tax_amount: Decimal
    total_amount: Decimal
    delivery_address: str
    placed_at: datetime
    status: OrderStatus = OrderStatus.PENDING
    delivery_instructions: Optional[str] = None
    estimated_delivery_time: Optional[datetime] = None
    actual_delivery_time: Optional[datetime] = None
    id: Optional[int] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    items: list[OrderItemRecord] = field(default_factory=list)
    restaurant: Optional[RestaurantSummary] = None


# =============================================================================
# FILTERS & PAGINATION
# =============================================================================

@dataclass(frozen=True)
class PageRequest:
    page: int = 1
    limit: int = 20

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.limit


RecordT = TypeVar("RecordT")
FilterT = TypeVar("FilterT")


@dataclass
class Page(Generic[RecordT]):
    items: list[RecordT]
    total: int
    page: int
    limit: int

    @property
    def total_pages(self) -> int:
        return math.ceil(self.total / self.limit) if self.limit else 0


@dataclass(frozen=True)
class UserFilter:
    email: Optional[str] = None
    role: Optional[UserRole] = None
    is_active: Optional[bool] = None

    def matches(self, record: UserRecord) -> bool:
        if self.email is not None and record.email != self.email:
            return False
        if self.role is not None and record.role != self.role:
            return False
        if self.is_active is not None and record.is_active != self.is_active:
            return False
        return True


@dataclass(frozen=True)
class RefreshTokenFilter:
    user_id: Optional[int] = None
    is_revoked: Optional[bool] = None

    def matches(self, record: RefreshTokenRecord) -> bool:
        if self.user_id is not None and record.user_id != self.user_id:
            return False
        if self.is_revoked is not None and record.is_revoked != self.is_revoked:
            return False
        return True


@dataclass(frozen=True)
class RestaurantFilter:
    is_active: Optional[bool] = None
    city: Optional[str] = None
    cuisine_type: Optional[str] = None

    def matches(self, record: RestaurantRecord) -> bool:
        if self.is_active is not None and record.is_active != self.is_active:
            return False
        if self.city is not None and record.city != self.city:
            return False
        if self.cuisine_type is not None and record.cuisine_type != self.cuisine_type:
            return False
        return True


@dataclass(frozen=True)
class MenuCategoryFilter:
    restaurant_id: Optional[int] = None
    is_active: Optional[bool] = None

    def matches(self, record: MenuCategoryRecord) -> bool:
        if self.restaurant_id is not None and record.restaurant_id != self.restaurant_id:
            return False
        if self.is_active is not None and record.is_active != self.is_active:
            return False
        return True


@dataclass(frozen=True)
class DishFilter:
    restaurant_id: Optional[int] = None
    category_id: Optional[int] = None
    is_available: Optional[bool] = None

    def matches(self, record: DishRecord) -> bool:
        if self.restaurant_id is not None and record.restaurant_id != self.restaurant_id:
            return False
        if self.category_id is not None and record.category_id != self.category_id:
            return False
        if self.is_available is not None and record.is_available != self.is_available:
            return False
        return True


class OrderSortField(str, Enum):
    PLACED_AT = "placed_at"
    TOTAL_AMOUNT = "total_amount"
    ORDER_NUMBER = "order_number"


@dataclass(frozen=True)
class OrderFilter:
    """
    Enumerated filter for order listings.

    placed_from / placed_to are inclusive bounds on placed_at.
    """
    user_id: Optional[int] = None
    restaurant_id: Optional[int] = None
    status: Optional[OrderStatus] = None
    placed_from: Optional[datetime] = None
    placed_to: Optional[datetime] = None
    sort_by: OrderSortField = OrderSortField.PLACED_AT
    descending: bool = True
    include_items: bool = False

    def matches(self, record: OrderRecord) -> bool:
        if self.user_id is not None and record.user_id != self.user_id:
            return False
        if self.restaurant_id is not None and record.restaurant_id != self.restaurant_id:
            return False
        if self.status is not None and record.status != self.status:
            return False
        if self.placed_from is not None and record.placed_at < self.placed_from:
            return False
        if self.placed_to is not None and record.placed_at > self.placed_to:
            return False
        return True


# =============================================================================
# REPOSITORIES
# =============================================================================

class Repository(ABC, Generic[RecordT, FilterT]):
    """CRUD contract shared by every entity repository."""

    @abstractmethod
    async def get(self, record_id: int, *, for_update: bool = False) -> Optional[RecordT]:
        """
        Read one record by id.

        Args:
            record_id: Primary key
            for_update: Lock the row until the transaction ends
        """

    @abstractmethod
    async def list(self, filters: FilterT, page: PageRequest) -> Page[RecordT]:
        """Filtered, paginated listing."""

    @abstractmethod
    async def create(self, record: RecordT) -> RecordT:
        """
        Insert a record and return it with its id populated.

        Raises:
            ConflictError: A unique field collides with an existing row
        """

    @abstractmethod
    async def update(self, record_id: int, **changes) -> RecordT:
        """
        Apply field changes and return the updated record.

        Raises:
            NotFoundError: No row with that id
        """

    @abstractmethod
    async def delete(self, record_id: int) -> bool:
        """Delete a row; False if it did not exist."""


class UserRepository(Repository[UserRecord, UserFilter]):

    @abstractmethod
    async def get_by_email(self, email: str) -> Optional[UserRecord]:
        pass

    @abstractmethod
    async def get_by_google_id(self, google_id: str) -> Optional[UserRecord]:
        pass


class RefreshTokenRepository(Repository[RefreshTokenRecord, RefreshTokenFilter]):

    @abstractmethod
    async def list_unexpired_for_user(
        self,
        user_id: int,
        now: datetime,
    ) -> list[RefreshTokenRecord]:
        """
        All tokens of a user with expires_at > now, revoked ones included,
        most recently created first.
        """

    @abstractmethod
    async def revoke_all_for_user(self, user_id: int, now: datetime) -> int:
        """Revoke every non-revoked token of a user; returns rows affected."""


class RestaurantRepository(Repository[RestaurantRecord, RestaurantFilter]):

    @abstractmethod
    async def list_ids(self) -> list[int]:
        pass


class MenuCategoryRepository(Repository[MenuCategoryRecord, MenuCategoryFilter]):
    pass


class DishRepository(Repository[DishRecord, DishFilter]):
    """
    create() and update() refuse a category owned by another restaurant.
    """

    @staticmethod
    def _check_category(
        owner_id: Optional[int],
        category_id: int,
        restaurant_id: int,
    ) -> None:
        """owner_id is the restaurant of the category, None when it does not exist."""
        if owner_id is None:
            raise NotFoundError(f"Category #{category_id} not found")
        if owner_id != restaurant_id:
            raise StateConflictError("Category does not belong to the specified restaurant")

    @abstractmethod
    async def find_for_restaurant(
        self,
        dish_ids: Sequence[int],
        restaurant_id: int,
        *,
        for_update: bool = False,
    ) -> list[DishRecord]:
        """Dishes among dish_ids that belong to restaurant_id."""

    @abstractmethod
    async def list_rated_for_restaurant(self, restaurant_id: int) -> list[DishRecord]:
        """Dishes of a restaurant having rating_count > 0."""


class OrderRepository(Repository[OrderRecord, OrderFilter]):
    """
    get() returns the order with its items and restaurant summary;
    list() attaches the restaurant summary and, when the filter asks
    for it, the items.
    """

    @abstractmethod
    async def max_order_number_with_prefix(self, prefix: str) -> Optional[str]:
        """Lexicographically greatest order_number starting with prefix."""


class OrderItemRepository(ABC):
    """Order lines are created with their order and never modified."""

    @abstractmethod
    async def create_many(
        self,
        order_id: int,
        items: Sequence[OrderItemRecord],
    ) -> list[OrderItemRecord]:
        pass

    @abstractmethod
    async def list_for_order(self, order_id: int) -> list[OrderItemRecord]:
        pass


class OrderNumberRepository(ABC):
    """Per-year order number counters."""

    @abstractmethod
    async def increment(self, year: int) -> Optional[int]:
        """
        Atomically bump and return the year's counter.

        Returns None if the year has no counter yet.
        """

    @abstractmethod
    async def initialize(self, year: int, start: int) -> bool:
        """
        Create the year's counter with last_value=start.

        Returns False if another transaction created it first.
        """


class UnitOfWork(ABC):
    """Repositories sharing one transaction."""

    users: UserRepository
    refresh_tokens: RefreshTokenRepository
    restaurants: RestaurantRepository
    categories: MenuCategoryRepository
    dishes: DishRepository
    orders: OrderRepository
    order_items: OrderItemRepository
    order_numbers: OrderNumberRepository


class BaseGateway(ABC):
    """
    Abstract base class for persistence gateways.

    Example:
        >>> gateway = get_gateway()
        >>> async with gateway.transaction() as uow:
        ...     restaurant = await uow.restaurants.get(1, for_update=True)
        ...     await uow.orders.create(order)
    """

    @property
    @abstractmethod
    def provider_name(self) -> str:
        """Return the name of the storage provider ("memory", "sql")."""

    @abstractmethod
    def transaction(self) -> AsyncContextManager[UnitOfWork]:
        """
        Open an all-or-nothing transaction scope.

        Commits when the block exits normally and rolls back every write
        when it raises.
        """

    async def initialize(self) -> None:
        """Prepare the backing store (create tables)."""

    async def close(self) -> None:
        """Release connections."""

    @abstractmethod
    async def health_check(self) -> bool:
        """Verify the backing store is reachable."""
