"""
In-Memory Persistence Gateway

Keeps every table in process memory. Used for local development and
the test-suite, the same way the mock services stand in for real APIs.

Behavior:
    - One asyncio lock serialises transactions, so every read inside a
      transaction is implicitly "locked for update"
    - A deep snapshot taken when the transaction opens is restored if the
      block raises, giving all-or-nothing commits
    - Records handed out are copies; mutating them never touches the store
    - Unique fields are enforced and raise ConflictError like the database

Author: Khalil Bannouri
Version: 1.0.0
"""

from __future__ import annotations

import asyncio
import copy
import dataclasses
import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, AsyncIterator, Callable, Optional, Sequence

from foodhub.core.errors import ConflictError, NotFoundError
from foodhub.storage.base import (
    BaseGateway,
    DishFilter,
    DishRecord,
    DishRepository,
    MenuCategoryFilter,
    MenuCategoryRecord,
    MenuCategoryRepository,
    OrderFilter,
    OrderItemRecord,
    OrderItemRepository,
    OrderNumberRepository,
    OrderRecord,
    OrderRepository,
    Page,
    PageRequest,
    RefreshTokenFilter,
    RefreshTokenRecord,
    RefreshTokenRepository,
    RestaurantFilter,
    RestaurantRecord,
    RestaurantRepository,
    UnitOfWork,
    UserFilter,
    UserRecord,
    UserRepository,
)

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class MemoryStore:
    """Tables and id sequences shared by all memory repositories."""

    TABLES = (
        "users",
        "refresh_tokens",
        "restaurants",
        "categories",
        "dishes",
        "orders",
        "order_items",
    )

    def __init__(self):
        self.tables: dict[str, dict[int, Any]] = {name: {} for name in self.TABLES}
        self.sequences: dict[str, int] = {name: 0 for name in self.TABLES}
        self.order_numbers: dict[int, int] = {}

    def next_id(self, table: str) -> int:
        self.sequences[table] += 1
        return self.sequences[table]

    def snapshot(self) -> tuple:
        return copy.deepcopy((self.tables, self.sequences, self.order_numbers))

    def restore(self, snapshot: tuple) -> None:
        self.tables, self.sequences, self.order_numbers = snapshot


class _MemoryRepository:
    """Generic CRUD over one MemoryStore table."""

    table: str = ""
    unique_fields: tuple[str, ...] = ()

    def __init__(self, store: MemoryStore, clock: Callable[[], datetime]):
        self._store = store
        self._clock = clock

    @property
    def _rows(self) -> dict[int, Any]:
        return self._store.tables[self.table]

    def _check_unique(self, record: Any, exclude_id: Optional[int] = None) -> None:
        for name in self.unique_fields:
            value = getattr(record, name)
            if value is None:
                continue
            for row_id, row in self._rows.items():
                if row_id != exclude_id and getattr(row, name) == value:
                    raise ConflictError(f"{self.table}.{name} already exists")

    def _sort_key(self, filters: Any) -> tuple[Callable[[Any], Any], bool]:
        return (lambda r: r.id), False

    def _present(self, record: Any, filters: Any = None) -> Any:
        return copy.deepcopy(record)

    async def get(self, record_id: int, *, for_update: bool = False) -> Optional[Any]:
        row = self._rows.get(record_id)
        return self._present(row) if row is not None else None

    async def list(self, filters: Any, page: PageRequest) -> Page:
        matched = [row for row in self._rows.values() if filters.matches(row)]
        key, reverse = self._sort_key(filters)
        matched.sort(key=key, reverse=reverse)
        window = matched[page.offset:page.offset + page.limit]
        return Page(
            items=[self._present(row, filters) for row in window],
            total=len(matched),
            page=page.page,
            limit=page.limit,
        )

    async def create(self, record: Any) -> Any:
        self._check_unique(record)
        now = self._clock()
        values = {"id": self._store.next_id(self.table)}
        names = {f.name for f in dataclasses.fields(record)}
        if "created_at" in names and record.created_at is None:
            values["created_at"] = now
        if "updated_at" in names and getattr(record, "updated_at") is None:
            values["updated_at"] = now
        stored = dataclasses.replace(copy.deepcopy(record), **values)
        self._rows[stored.id] = stored
        return self._present(stored)

    async def update(self, record_id: int, **changes) -> Any:
        row = self._rows.get(record_id)
        if row is None:
            raise NotFoundError(f"{self.table} #{record_id} not found")
        names = {f.name for f in dataclasses.fields(row)}
        unknown = set(changes) - names
        if unknown:
            raise ValueError(f"Unknown fields for {self.table}: {sorted(unknown)}")
        if "updated_at" in names:
            changes.setdefault("updated_at", self._clock())
        updated = dataclasses.replace(row, **changes)
        self._check_unique(updated, exclude_id=record_id)
        self._rows[record_id] = updated
        return self._present(updated)

    async def delete(self, record_id: int) -> bool:
        return self._rows.pop(record_id, None) is not None


class MemoryUserRepository(_MemoryRepository, UserRepository):
    table = "users"
    unique_fields = ("email", "google_id")

    async def get_by_email(self, email: str) -> Optional[UserRecord]:
        for row in self._rows.values():
            if row.email == email:
                return self._present(row)
        return None

    async def get_by_google_id(self, google_id: str) -> Optional[UserRecord]:
        for row in self._rows.values():
            if row.google_id == google_id:
                return self._present(row)
        return None


class MemoryRefreshTokenRepository(_MemoryRepository, RefreshTokenRepository):
    table = "refresh_tokens"
    unique_fields = ("token_hash",)

    async def list_unexpired_for_user(
        self,
        user_id: int,
        now: datetime,
    ) -> list[RefreshTokenRecord]:
        rows = [
            row for row in self._rows.values()
            if row.user_id == user_id and row.expires_at > now
        ]
        rows.sort(key=lambda r: (r.created_at, r.id), reverse=True)
        return [self._present(row) for row in rows]

    async def revoke_all_for_user(self, user_id: int, now: datetime) -> int:
        count = 0
        for row_id, row in list(self._rows.items()):
            if row.user_id == user_id and not row.is_revoked:
                self._rows[row_id] = dataclasses.replace(row, is_revoked=True, revoked_at=now)
                count += 1
        return count


class MemoryRestaurantRepository(_MemoryRepository, RestaurantRepository):
    table = "restaurants"

    async def list_ids(self) -> list[int]:
        return sorted(self._rows)


class MemoryMenuCategoryRepository(_MemoryRepository, MenuCategoryRepository):
    table = "categories"

    def _sort_key(self, filters: MenuCategoryFilter):
        return (lambda r: (r.display_order, r.id)), False


class MemoryDishRepository(_MemoryRepository, DishRepository):
    table = "dishes"

    def _category_owner(self, category_id: int) -> Optional[int]:
        category = self._store.tables["categories"].get(category_id)
        return category.restaurant_id if category is not None else None

    async def create(self, record: DishRecord) -> DishRecord:
        self._check_category(
            self._category_owner(record.category_id), record.category_id, record.restaurant_id
        )
        return await super().create(record)

    async def update(self, record_id: int, **changes) -> DishRecord:
        row = self._rows.get(record_id)
        if row is not None and ("category_id" in changes or "restaurant_id" in changes):
            category_id = changes.get("category_id", row.category_id)
            self._check_category(
                self._category_owner(category_id),
                category_id,
                changes.get("restaurant_id", row.restaurant_id),
            )
        return await super().update(record_id, **changes)

    async def find_for_restaurant(
        self,
        dish_ids: Sequence[int],
        restaurant_id: int,
        *,
        for_update: bool = False,
    ) -> list[DishRecord]:
        wanted = set(dish_ids)
        return [
            self._present(row) for row_id, row in sorted(self._rows.items())
            if row_id in wanted and row.restaurant_id == restaurant_id
        ]

    async def list_rated_for_restaurant(self, restaurant_id: int) -> list[DishRecord]:
        return [
            self._present(row) for _, row in sorted(self._rows.items())
            if row.restaurant_id == restaurant_id and row.rating_count > 0
        ]


class MemoryOrderItemRepository(OrderItemRepository):

    def __init__(self, store: MemoryStore, clock: Callable[[], datetime]):
        self._store = store
        self._clock = clock

    @property
    def _rows(self) -> dict[int, OrderItemRecord]:
        return self._store.tables["order_items"]

    def _present(self, row: OrderItemRecord) -> OrderItemRecord:
        item = copy.deepcopy(row)
        dish = self._store.tables["dishes"].get(row.dish_id)
        item.dish_name = dish.name if dish is not None else None
        return item

    async def create_many(
        self,
        order_id: int,
        items: Sequence[OrderItemRecord],
    ) -> list[OrderItemRecord]:
        created = []
        for item in items:
            stored = dataclasses.replace(
                copy.deepcopy(item),
                id=self._store.next_id("order_items"),
                order_id=order_id,
                created_at=item.created_at or self._clock(),
            )
            self._rows[stored.id] = stored
            created.append(self._present(stored))
        return created

    async def list_for_order(self, order_id: int) -> list[OrderItemRecord]:
        return [
            self._present(row) for _, row in sorted(self._rows.items())
            if row.order_id == order_id
        ]


class MemoryOrderRepository(_MemoryRepository, OrderRepository):
    table = "orders"
    unique_fields = ("order_number",)

    def __init__(self, store: MemoryStore, clock: Callable[[], datetime], items: MemoryOrderItemRepository):
        super().__init__(store, clock)
        self._items = items

    def _sort_key(self, filters: OrderFilter):
        field_name = filters.sort_by.value
        return (lambda r: (getattr(r, field_name), r.id)), filters.descending

    def _present(self, record: OrderRecord, filters: Optional[OrderFilter] = None) -> OrderRecord:
        order = copy.deepcopy(record)
        order.items = []
        if filters is None or filters.include_items:
            order.items = [
                self._items._present(row)
                for _, row in sorted(self._store.tables["order_items"].items())
                if row.order_id == record.id
            ]
        restaurant = self._store.tables["restaurants"].get(record.restaurant_id)
        order.restaurant = restaurant.summary() if restaurant is not None else None
        return order

    async def create(self, record: OrderRecord) -> OrderRecord:
        # Items are written through the order_items repository
        return await super().create(dataclasses.replace(record, items=[], restaurant=None))

    async def update(self, record_id: int, **changes) -> OrderRecord:
        changes.pop("items", None)
        changes.pop("restaurant", None)
        return await super().update(record_id, **changes)

    async def delete(self, record_id: int) -> bool:
        existed = await super().delete(record_id)
        if existed:
            for item_id in [i for i, row in self._store.tables["order_items"].items() if row.order_id == record_id]:
                del self._store.tables["order_items"][item_id]
        return existed

    async def max_order_number_with_prefix(self, prefix: str) -> Optional[str]:
        numbers = [row.order_number for row in self._rows.values() if row.order_number.startswith(prefix)]
        return max(numbers) if numbers else None


class MemoryOrderNumberRepository(OrderNumberRepository):

    def __init__(self, store: MemoryStore):
        self._store = store

    async def increment(self, year: int) -> Optional[int]:
        if year not in self._store.order_numbers:
            return None
        self._store.order_numbers[year] += 1
        return self._store.order_numbers[year]

    async def initialize(self, year: int, start: int) -> bool:
        if year in self._store.order_numbers:
            return False
        self._store.order_numbers[year] = start
        return True


class MemoryUnitOfWork(UnitOfWork):

    def __init__(self, store: MemoryStore, clock: Callable[[], datetime]):
        self.users = MemoryUserRepository(store, clock)
        self.refresh_tokens = MemoryRefreshTokenRepository(store, clock)
        self.restaurants = MemoryRestaurantRepository(store, clock)
        self.categories = MemoryMenuCategoryRepository(store, clock)
        self.dishes = MemoryDishRepository(store, clock)
        self.order_items = MemoryOrderItemRepository(store, clock)
        self.orders = MemoryOrderRepository(store, clock, self.order_items)
        self.order_numbers = MemoryOrderNumberRepository(store)


class MemoryGateway(BaseGateway):
    """
    In-process implementation of the persistence gateway.

    Example:
        >>> gateway = MemoryGateway()
        >>> async with gateway.transaction() as uow:
        ...     restaurant = await uow.restaurants.create(RestaurantRecord(...))
    """

    def __init__(self, clock: Callable[[], datetime] = _utcnow):
        self._store = MemoryStore()
        self._clock = clock
        self._lock = asyncio.Lock()
        logger.info("MemoryGateway initialized")

    @property
    def provider_name(self) -> str:
        """Return the provider name."""
        return "memory"

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[MemoryUnitOfWork]:
        async with self._lock:
            snapshot = self._store.snapshot()
            try:
                yield MemoryUnitOfWork(self._store, self._clock)
            except BaseException:
                self._store.restore(snapshot)
                logger.debug("Memory: transaction rolled back")
                raise

    async def health_check(self) -> bool:
        """The in-process store is always available."""
        return True
