"""
SQLAlchemy Persistence Gateway

PostgreSQL (psycopg async) implementation of the gateway contract.

Behavior:
    - One AsyncSession per transaction scope; session.begin() commits on
      clean exit and rolls back on any exception
    - for_update=True reads issue SELECT ... FOR UPDATE so rows read while
      validating an order cannot change before the transaction ends
    - Order numbers come from a per-year counter row locked FOR UPDATE;
      the unique index on orders.order_number is the final backstop
    - Unique violations surface as ConflictError

Author: Khalil Bannouri
Version: 1.0.0
"""

from __future__ import annotations

import dataclasses
import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, AsyncIterator, Optional, Sequence

from sqlalchemy import func, inspect, select, update
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession
from sqlalchemy.orm import selectinload

from foodhub.core.errors import ConflictError, NotFoundError
from foodhub.database import build_engine, build_session_maker, init_db
from foodhub.models import (
    Dish,
    MenuCategory,
    Order,
    OrderItem,
    OrderNumberSequence,
    RefreshToken,
    Restaurant,
    User,
)
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


def _aware(value: Any) -> Any:
    # SQLite hands back naive datetimes; everything is stored as UTC
    if isinstance(value, datetime) and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class _SqlRepository:
    """Generic CRUD mapping one ORM model to one record dataclass."""

    model: Any = None
    record_type: Any = None

    def __init__(self, session: AsyncSession):
        self._session = session

    # ------------------------------------------------------------------
    # Mapping
    # ------------------------------------------------------------------

    @property
    def _column_names(self) -> set[str]:
        return {column.key for column in self.model.__table__.columns}

    def _to_record(self, row: Any) -> Any:
        values = {
            f.name: _aware(getattr(row, f.name))
            for f in dataclasses.fields(self.record_type)
            if f.name in self._column_names
        }
        return self.record_type(**values)

    def _to_row(self, record: Any) -> Any:
        values = {}
        for f in dataclasses.fields(record):
            if f.name not in self._column_names:
                continue
            value = getattr(record, f.name)
            if value is None and f.name in ("id", "created_at", "updated_at"):
                continue
            values[f.name] = value
        return self.model(**values)

    def _filter_clauses(self, filters: Any) -> list[Any]:
        return []

    def _order_by(self, filters: Any) -> list[Any]:
        return [self.model.id.asc()]

    async def _flush(self) -> None:
        try:
            await self._session.flush()
        except IntegrityError as e:
            logger.warning(f"Integrity violation on {self.model.__tablename__}: {e.orig}")
            raise ConflictError(f"{self.model.__tablename__} violates a unique constraint") from e

    # ------------------------------------------------------------------
    # CRUD
    # ------------------------------------------------------------------

    async def _get_row(self, record_id: int, for_update: bool = False) -> Optional[Any]:
        return await self._session.get(
            self.model,
            record_id,
            with_for_update=for_update or None,
            populate_existing=for_update,
        )

    async def get(self, record_id: int, *, for_update: bool = False) -> Optional[Any]:
        row = await self._get_row(record_id, for_update)
        return self._to_record(row) if row is not None else None

    async def list(self, filters: Any, page: PageRequest) -> Page:
        clauses = self._filter_clauses(filters)

        count_query = select(func.count()).select_from(self.model).where(*clauses)
        total = (await self._session.execute(count_query)).scalar() or 0

        query = (
            select(self.model)
            .where(*clauses)
            .order_by(*self._order_by(filters))
            .offset(page.offset)
            .limit(page.limit)
        )
        rows = (await self._session.execute(self._list_options(query, filters))).scalars().all()

        return Page(
            items=[self._to_record(row) for row in rows],
            total=total,
            page=page.page,
            limit=page.limit,
        )

    def _list_options(self, query: Any, filters: Any) -> Any:
        return query

    async def create(self, record: Any) -> Any:
        row = self._to_row(record)
        self._session.add(row)
        await self._flush()
        await self._session.refresh(row)
        return self._to_record(row)

    async def update(self, record_id: int, **changes) -> Any:
        row = await self._get_row(record_id)
        if row is None:
            raise NotFoundError(f"{self.model.__tablename__} #{record_id} not found")
        unknown = set(changes) - self._column_names
        if unknown:
            raise ValueError(f"Unknown fields for {self.model.__tablename__}: {sorted(unknown)}")
        for name, value in changes.items():
            setattr(row, name, value)
        await self._flush()
        await self._session.refresh(row)
        return self._to_record(row)

    async def delete(self, record_id: int) -> bool:
        row = await self._get_row(record_id)
        if row is None:
            return False
        await self._session.delete(row)
        await self._flush()
        return True


class SqlUserRepository(_SqlRepository, UserRepository):
    model = User
    record_type = UserRecord

    def _filter_clauses(self, filters: UserFilter) -> list[Any]:
        clauses = []
        if filters.email is not None:
            clauses.append(User.email == filters.email)
        if filters.role is not None:
            clauses.append(User.role == filters.role)
        if filters.is_active is not None:
            clauses.append(User.is_active == filters.is_active)
        return clauses

    async def get_by_email(self, email: str) -> Optional[UserRecord]:
        result = await self._session.execute(select(User).where(User.email == email))
        row = result.scalar_one_or_none()
        return self._to_record(row) if row is not None else None

    async def get_by_google_id(self, google_id: str) -> Optional[UserRecord]:
        result = await self._session.execute(select(User).where(User.google_id == google_id))
        row = result.scalar_one_or_none()
        return self._to_record(row) if row is not None else None


class SqlRefreshTokenRepository(_SqlRepository, RefreshTokenRepository):
    model = RefreshToken
    record_type = RefreshTokenRecord

    def _filter_clauses(self, filters: RefreshTokenFilter) -> list[Any]:
        clauses = []
        if filters.user_id is not None:
            clauses.append(RefreshToken.user_id == filters.user_id)
        if filters.is_revoked is not None:
            clauses.append(RefreshToken.is_revoked == filters.is_revoked)
        return clauses

    def _order_by(self, filters: RefreshTokenFilter) -> list[Any]:
        return [RefreshToken.created_at.desc(), RefreshToken.id.desc()]

    async def list_unexpired_for_user(
        self,
        user_id: int,
        now: datetime,
    ) -> list[RefreshTokenRecord]:
        result = await self._session.execute(
            select(RefreshToken)
            .where(RefreshToken.user_id == user_id, RefreshToken.expires_at > now)
            .order_by(RefreshToken.created_at.desc(), RefreshToken.id.desc())
        )
        return [self._to_record(row) for row in result.scalars().all()]

    async def revoke_all_for_user(self, user_id: int, now: datetime) -> int:
        result = await self._session.execute(
            update(RefreshToken)
            .where(RefreshToken.user_id == user_id, RefreshToken.is_revoked.is_(False))
            .values(is_revoked=True, revoked_at=now)
            .execution_options(synchronize_session="fetch")
        )
        return result.rowcount or 0


class SqlRestaurantRepository(_SqlRepository, RestaurantRepository):
    model = Restaurant
    record_type = RestaurantRecord

    def _filter_clauses(self, filters: RestaurantFilter) -> list[Any]:
        clauses = []
        if filters.is_active is not None:
            clauses.append(Restaurant.is_active == filters.is_active)
        if filters.city is not None:
            clauses.append(Restaurant.city == filters.city)
        if filters.cuisine_type is not None:
            clauses.append(Restaurant.cuisine_type == filters.cuisine_type)
        return clauses

    async def list_ids(self) -> list[int]:
        result = await self._session.execute(select(Restaurant.id).order_by(Restaurant.id))
        return list(result.scalars().all())


class SqlMenuCategoryRepository(_SqlRepository, MenuCategoryRepository):
    model = MenuCategory
    record_type = MenuCategoryRecord

    def _filter_clauses(self, filters: MenuCategoryFilter) -> list[Any]:
        clauses = []
        if filters.restaurant_id is not None:
            clauses.append(MenuCategory.restaurant_id == filters.restaurant_id)
        if filters.is_active is not None:
            clauses.append(MenuCategory.is_active == filters.is_active)
        return clauses

    def _order_by(self, filters: MenuCategoryFilter) -> list[Any]:
        return [MenuCategory.display_order.asc(), MenuCategory.id.asc()]


class SqlDishRepository(_SqlRepository, DishRepository):
    model = Dish
    record_type = DishRecord

    def _filter_clauses(self, filters: DishFilter) -> list[Any]:
        clauses = []
        if filters.restaurant_id is not None:
            clauses.append(Dish.restaurant_id == filters.restaurant_id)
        if filters.category_id is not None:
            clauses.append(Dish.category_id == filters.category_id)
        if filters.is_available is not None:
            clauses.append(Dish.is_available == filters.is_available)
        return clauses

    async def _category_owner(self, category_id: int) -> Optional[int]:
        return (
            await self._session.execute(
                select(MenuCategory.restaurant_id).where(MenuCategory.id == category_id)
            )
        ).scalar()

    async def create(self, record: DishRecord) -> DishRecord:
        self._check_category(
            await self._category_owner(record.category_id),
            record.category_id,
            record.restaurant_id,
        )
        return await super().create(record)

    async def update(self, record_id: int, **changes) -> DishRecord:
        if "category_id" in changes or "restaurant_id" in changes:
            row = await self._get_row(record_id)
            if row is not None:
                category_id = changes.get("category_id", row.category_id)
                self._check_category(
                    await self._category_owner(category_id),
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
        query = (
            select(Dish)
            .where(Dish.id.in_(list(dish_ids)), Dish.restaurant_id == restaurant_id)
            .order_by(Dish.id)
        )
        if for_update:
            query = query.with_for_update().execution_options(populate_existing=True)
        result = await self._session.execute(query)
        return [self._to_record(row) for row in result.scalars().all()]

    async def list_rated_for_restaurant(self, restaurant_id: int) -> list[DishRecord]:
        result = await self._session.execute(
            select(Dish)
            .where(Dish.restaurant_id == restaurant_id, Dish.rating_count > 0)
            .order_by(Dish.id)
        )
        return [self._to_record(row) for row in result.scalars().all()]


def _item_to_record(row: OrderItem) -> OrderItemRecord:
    dish = None if "dish" in inspect(row).unloaded else row.dish
    return OrderItemRecord(
        id=row.id,
        order_id=row.order_id,
        dish_id=row.dish_id,
        quantity=row.quantity,
        price_at_order=row.price_at_order,
        subtotal=row.subtotal,
        special_instructions=row.special_instructions,
        dish_name=dish.name if dish is not None else None,
        created_at=_aware(row.created_at),
    )


class SqlOrderItemRepository(OrderItemRepository):

    def __init__(self, session: AsyncSession):
        self._session = session

    async def create_many(
        self,
        order_id: int,
        items: Sequence[OrderItemRecord],
    ) -> list[OrderItemRecord]:
        rows = [
            OrderItem(
                order_id=order_id,
                dish_id=item.dish_id,
                quantity=item.quantity,
                price_at_order=item.price_at_order,
                subtotal=item.subtotal,
                special_instructions=item.special_instructions,
            )
            for item in items
        ]
        self._session.add_all(rows)
        await self._session.flush()
        return await self.list_for_order(order_id)

    async def list_for_order(self, order_id: int) -> list[OrderItemRecord]:
        result = await self._session.execute(
            select(OrderItem)
            .where(OrderItem.order_id == order_id)
            .options(selectinload(OrderItem.dish))
            .order_by(OrderItem.id)
            .execution_options(populate_existing=True)
        )
        return [_item_to_record(row) for row in result.scalars().all()]


class SqlOrderRepository(_SqlRepository, OrderRepository):
    model = Order
    record_type = OrderRecord

    SORT_COLUMNS = {
        "placed_at": Order.placed_at,
        "total_amount": Order.total_amount,
        "order_number": Order.order_number,
    }

    def _to_record(self, row: Order) -> OrderRecord:
        record = super()._to_record(row)
        unloaded = inspect(row).unloaded
        if "items" not in unloaded:
            record.items = [_item_to_record(item) for item in row.items]
        if "restaurant" not in unloaded and row.restaurant is not None:
            record.restaurant = RestaurantRecord(
                id=row.restaurant.id,
                name=row.restaurant.name,
                address=row.restaurant.address,
                phone_number=row.restaurant.phone_number,
            ).summary()
        return record

    def _filter_clauses(self, filters: OrderFilter) -> list[Any]:
        clauses = []
        if filters.user_id is not None:
            clauses.append(Order.user_id == filters.user_id)
        if filters.restaurant_id is not None:
            clauses.append(Order.restaurant_id == filters.restaurant_id)
        if filters.status is not None:
            clauses.append(Order.status == filters.status)
        if filters.placed_from is not None:
            clauses.append(Order.placed_at >= filters.placed_from)
        if filters.placed_to is not None:
            clauses.append(Order.placed_at <= filters.placed_to)
        return clauses

    def _order_by(self, filters: OrderFilter) -> list[Any]:
        column = self.SORT_COLUMNS[filters.sort_by.value]
        if filters.descending:
            return [column.desc(), Order.id.desc()]
        return [column.asc(), Order.id.asc()]

    def _list_options(self, query: Any, filters: OrderFilter) -> Any:
        options = [selectinload(Order.restaurant)]
        if filters.include_items:
            options.append(selectinload(Order.items).selectinload(OrderItem.dish))
        return query.options(*options)

    async def list(self, filters: OrderFilter, page: PageRequest) -> Page:
        result = await super().list(filters, page)
        if not filters.include_items:
            for record in result.items:
                record.items = []
        return result

    async def _get_row(self, record_id: int, for_update: bool = False) -> Optional[Order]:
        query = (
            select(Order)
            .where(Order.id == record_id)
            .options(
                selectinload(Order.items).selectinload(OrderItem.dish),
                selectinload(Order.restaurant),
            )
            .execution_options(populate_existing=True)
        )
        if for_update:
            query = query.with_for_update(of=Order)
        result = await self._session.execute(query)
        return result.scalar_one_or_none()

    def _to_row(self, record: OrderRecord) -> Order:
        row = super()._to_row(record)
        row.items = []
        return row

    async def create(self, record: OrderRecord) -> OrderRecord:
        row = self._to_row(record)
        self._session.add(row)
        await self._flush()
        return await self.get(row.id)

    async def update(self, record_id: int, **changes) -> OrderRecord:
        changes.pop("items", None)
        changes.pop("restaurant", None)
        await super().update(record_id, **changes)
        return await self.get(record_id)

    async def max_order_number_with_prefix(self, prefix: str) -> Optional[str]:
        result = await self._session.execute(
            select(Order.order_number)
            .where(Order.order_number.like(f"{prefix}%"))
            .order_by(Order.order_number.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()


class SqlOrderNumberRepository(OrderNumberRepository):

    def __init__(self, session: AsyncSession):
        self._session = session

    async def increment(self, year: int) -> Optional[int]:
        row = await self._session.get(
            OrderNumberSequence,
            year,
            with_for_update=True,
            populate_existing=True,
        )
        if row is None:
            return None
        row.last_value += 1
        await self._session.flush()
        return row.last_value

    async def initialize(self, year: int, start: int) -> bool:
        dialect = self._session.bind.dialect.name
        insert = postgresql.insert if dialect == "postgresql" else sqlite.insert
        result = await self._session.execute(
            insert(OrderNumberSequence)
            .values(year=year, last_value=start)
            .on_conflict_do_nothing(index_elements=["year"])
        )
        return result.rowcount == 1


class SqlUnitOfWork(UnitOfWork):

    def __init__(self, session: AsyncSession):
        self.session = session
        self.users = SqlUserRepository(session)
        self.refresh_tokens = SqlRefreshTokenRepository(session)
        self.restaurants = SqlRestaurantRepository(session)
        self.categories = SqlMenuCategoryRepository(session)
        self.dishes = SqlDishRepository(session)
        self.orders = SqlOrderRepository(session)
        self.order_items = SqlOrderItemRepository(session)
        self.order_numbers = SqlOrderNumberRepository(session)


class SqlGateway(BaseGateway):
    """
    SQLAlchemy implementation of the persistence gateway.

    Args:
        database_url: Async SQLAlchemy URL
        echo: Log SQL statements
        engine: Pre-built engine (tests); overrides database_url
    """

    def __init__(
        self,
        database_url: Optional[str] = None,
        echo: bool = False,
        engine: Optional[AsyncEngine] = None,
    ):
        if engine is None:
            if database_url is None:
                raise ValueError("SqlGateway needs a database_url or an engine")
            engine = build_engine(database_url, echo=echo)
        self._engine = engine
        self._session_maker = build_session_maker(engine)
        logger.info(f"SqlGateway initialized ({engine.dialect.name})")

    @property
    def provider_name(self) -> str:
        """Return the provider name."""
        return "sql"

    @property
    def engine(self) -> AsyncEngine:
        return self._engine

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[SqlUnitOfWork]:
        async with self._session_maker() as session:
            async with session.begin():
                yield SqlUnitOfWork(session)

    async def initialize(self) -> None:
        await init_db(self._engine)

    async def close(self) -> None:
        await self._engine.dispose()

    async def health_check(self) -> bool:
        try:
            async with self._session_maker() as session:
                await session.execute(select(1))
            return True
        except Exception as e:
            logger.error(f"Database health check failed: {e}")
            return False
