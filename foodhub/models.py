"""
SQLAlchemy Database Models

Marketplace schema:
- Users and their refresh tokens (hashed, never plaintext)
- Restaurants with commerce configuration and derived ratings
- Menu categories and dishes
- Orders with immutable line items (price snapshots)
- Per-year order number counters

Author: Khalil Bannouri
Version: 1.0.0
"""

import enum
from datetime import datetime, timezone

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    Enum,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
)
from sqlalchemy.orm import relationship

from foodhub.database import Base


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class OrderStatus(str, enum.Enum):
    """Order status workflow."""
    PENDING = "pending"
    CONFIRMED = "confirmed"
    PREPARING = "preparing"
    READY = "ready"
    OUT_FOR_DELIVERY = "out_for_delivery"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"


class UserRole(str, enum.Enum):
    """Who the user acts as when calling the API."""
    CUSTOMER = "customer"
    RESTAURANT_STAFF = "restaurant_staff"
    ADMIN = "admin"


# Storage precision
MONEY = Numeric(10, 2)
RATE = Numeric(9, 8)
DEVICE_INFO_LENGTH = 255


class User(Base):
    """
    Customer, restaurant staff or admin account.

    Credential material is a password hash, an external (Google) id, or both.
    """
    __tablename__ = "users"
    __table_args__ = (
        CheckConstraint(
            "password_hash IS NOT NULL OR google_id IS NOT NULL",
            name="ck_users_has_credential",
        ),
    )

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    email = Column(String(255), nullable=False, unique=True, index=True)
    password_hash = Column(String(255), nullable=True)
    google_id = Column(String(255), nullable=True, unique=True)
    name = Column(String(200), nullable=False)
    phone_number = Column(String(20), nullable=True)
    address = Column(Text, nullable=True)
    role = Column(Enum(UserRole), default=UserRole.CUSTOMER, nullable=False)
    restaurant_id = Column(Integer, ForeignKey("restaurants.id"), nullable=True)
    is_active = Column(Boolean, default=True, nullable=False)

    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    refresh_tokens = relationship(
        "RefreshToken", back_populates="user", cascade="all, delete-orphan"
    )

    def __repr__(self):
        return f"<User #{self.id} - {self.email} - {self.role.value}>"


class RefreshToken(Base):
    """
    One issued session credential.

    Only the bcrypt hash of the bearer secret is stored. Once revoked a
    token is never un-revoked.
    """
    __tablename__ = "refresh_tokens"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    token_hash = Column(String(255), nullable=False, unique=True)
    user_id = Column(
        Integer,
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    expires_at = Column(DateTime(timezone=True), nullable=False, index=True)
    device_info = Column(String(DEVICE_INFO_LENGTH), nullable=True)
    is_revoked = Column(Boolean, default=False, nullable=False, index=True)
    revoked_at = Column(DateTime(timezone=True), nullable=True)
    last_used_at = Column(DateTime(timezone=True), nullable=True)

    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)

    user = relationship("User", back_populates="refresh_tokens")

    def __repr__(self):
        state = "revoked" if self.is_revoked else "active"
        return f"<RefreshToken #{self.id} - user {self.user_id} - {state}>"


class Restaurant(Base):
    """
    A restaurant with its commerce configuration.

    average_rating / rating_count are derived and only written by the
    rating aggregation job.
    """
    __tablename__ = "restaurants"
    __table_args__ = (
        CheckConstraint("service_charge_rate >= 0 AND service_charge_rate <= 1", name="ck_restaurants_service_rate"),
        CheckConstraint("tax_rate >= 0 AND tax_rate <= 1", name="ck_restaurants_tax_rate"),
        CheckConstraint("minimum_order >= 0", name="ck_restaurants_minimum_order"),
        CheckConstraint("delivery_fee >= 0", name="ck_restaurants_delivery_fee"),
    )

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    name = Column(String(200), nullable=False)
    description = Column(Text, nullable=True)
    cuisine_type = Column(String(100), nullable=True)
    address = Column(String(255), nullable=False)
    city = Column(String(100), nullable=True)
    phone_number = Column(String(20), nullable=True)
    image_uri = Column(String(500), nullable=True)

    # =========================================================================
    # COMMERCE CONFIGURATION
    # =========================================================================
    minimum_order = Column(MONEY, nullable=False, default=0)
    delivery_fee = Column(MONEY, nullable=False, default=0)
    service_charge_rate = Column(RATE, nullable=False, default=0)
    tax_rate = Column(RATE, nullable=False, default=0)
    is_active = Column(Boolean, default=True, nullable=False, index=True)

    # =========================================================================
    # DERIVED RATINGS
    # =========================================================================
    average_rating = Column(RATE, nullable=False, default=0)
    rating_count = Column(Integer, nullable=False, default=0)

    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    categories = relationship("MenuCategory", back_populates="restaurant", cascade="all, delete-orphan")
    dishes = relationship("Dish", back_populates="restaurant")

    def __repr__(self):
        return f"<Restaurant #{self.id} - {self.name}>"


class MenuCategory(Base):
    """Groups dishes on one restaurant's menu."""
    __tablename__ = "menu_categories"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    restaurant_id = Column(
        Integer,
        ForeignKey("restaurants.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    name = Column(String(100), nullable=False)
    description = Column(Text, nullable=True)
    display_order = Column(Integer, nullable=False, default=0)
    is_active = Column(Boolean, default=True, nullable=False)

    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)

    restaurant = relationship("Restaurant", back_populates="categories")
    dishes = relationship("Dish", back_populates="category")

    def __repr__(self):
        return f"<MenuCategory #{self.id} - {self.name}>"


class Dish(Base):
    """A purchasable menu item (a.k.a. MenuItem)."""
    __tablename__ = "dishes"
    __table_args__ = (
        CheckConstraint("price >= 0", name="ck_dishes_price"),
        CheckConstraint("rating_count >= 0", name="ck_dishes_rating_count"),
    )

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    restaurant_id = Column(Integer, ForeignKey("restaurants.id"), nullable=False, index=True)
    category_id = Column(Integer, ForeignKey("menu_categories.id"), nullable=False, index=True)
    name = Column(String(200), nullable=False)
    description = Column(Text, nullable=True)
    price = Column(MONEY, nullable=False)
    image_uri = Column(String(500), nullable=True)
    is_available = Column(Boolean, default=True, nullable=False)
    average_rating = Column(RATE, nullable=False, default=0)
    rating_count = Column(Integer, nullable=False, default=0)

    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    restaurant = relationship("Restaurant", back_populates="dishes")
    category = relationship("MenuCategory", back_populates="dishes")

    def __repr__(self):
        return f"<Dish #{self.id} - {self.name} - {self.price}>"


class Order(Base):
    """
    One placement event.

    total_amount always equals subtotal + delivery_fee + service_charge +
    tax_amount at stored precision.
    """
    __tablename__ = "orders"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    order_number = Column(String(20), nullable=False, unique=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    restaurant_id = Column(Integer, ForeignKey("restaurants.id"), nullable=False, index=True)

    status = Column(
        Enum(OrderStatus),
        default=OrderStatus.PENDING,
        nullable=False,
        index=True
    )

    # =========================================================================
    # PRICING
    # =========================================================================
    subtotal = Column(MONEY, nullable=False)
    delivery_fee = Column(MONEY, nullable=False)
    service_charge = Column(MONEY, nullable=False)
    tax_amount = Column(MONEY, nullable=False)
    total_amount = Column(MONEY, nullable=False)

    # =========================================================================
    # DELIVERY
    # =========================================================================
    delivery_address = Column(Text, nullable=False)
    delivery_instructions = Column(Text, nullable=True)
    estimated_delivery_time = Column(DateTime(timezone=True), nullable=True)
    actual_delivery_time = Column(DateTime(timezone=True), nullable=True)

    # =========================================================================
    # TIMESTAMPS
    # =========================================================================
    placed_at = Column(DateTime(timezone=True), nullable=False, index=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    items = relationship(
        "OrderItem",
        back_populates="order",
        cascade="all, delete-orphan",
        order_by="OrderItem.id",
    )
    restaurant = relationship("Restaurant")

    def __repr__(self):
        return f"<Order {self.order_number} - {self.status.value} - {self.total_amount}>"


class OrderItem(Base):
    """Immutable order line with the dish price captured at order time."""
    __tablename__ = "order_items"
    __table_args__ = (
        CheckConstraint("quantity >= 1", name="ck_order_items_quantity"),
    )

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    order_id = Column(
        Integer,
        ForeignKey("orders.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    dish_id = Column(Integer, ForeignKey("dishes.id"), nullable=False)
    quantity = Column(Integer, nullable=False)
    price_at_order = Column(MONEY, nullable=False)
    subtotal = Column(MONEY, nullable=False)
    special_instructions = Column(Text, nullable=True)

    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)

    order = relationship("Order", back_populates="items")
    dish = relationship("Dish")

    def __repr__(self):
        return f"<OrderItem #{self.id} - dish {self.dish_id} x{self.quantity}>"


class OrderNumberSequence(Base):
    """Last issued order number sequence per calendar year."""
    __tablename__ = "order_number_sequences"

    year = Column(Integer, primary_key=True, autoincrement=False)
    last_value = Column(Integer, nullable=False, default=0)

    def __repr__(self):
        return f"<OrderNumberSequence {self.year} - {self.last_value}>"
