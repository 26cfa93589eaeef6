"""
Database Seed Script

Creates demo restaurants, menus and users through the persistence gateway.
Run from project root: python scripts/seed.py

Demo accounts (password: Passw0rd!):
    - admin@foodhub.dev     (admin)
    - staff@foodhub.dev     (staff of the first restaurant)
    - customer@foodhub.dev  (customer)

Author: Khalil Bannouri
Version: 1.0.0
"""

import asyncio
import os
import sys
from decimal import Decimal

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))
# Windows event loop fix
if sys.platform == "win32":
    asyncio.set_event_loop_policy(asyncio.WindowsSelectorEventLoopPolicy())

from foodhub.core.config import get_settings, setup_logging
from foodhub.models import UserRole
from foodhub.services.security import SecretHasher
from foodhub.storage import create_gateway
from foodhub.storage.base import (
    DishRecord,
    MenuCategoryRecord,
    RestaurantRecord,
    UserRecord,
)

DEMO_PASSWORD = "Passw0rd!"

RESTAURANTS = [
    {
        "restaurant": RestaurantRecord(
            name="Trattoria Bella",
            address="12 Via Roma",
            city="New York",
            cuisine_type="Italian",
            phone_number="555-201-0001",
            minimum_order=Decimal("15.00"),
            delivery_fee=Decimal("2.00"),
            service_charge_rate=Decimal("0.05"),
            tax_rate=Decimal("0.10"),
        ),
        "menu": {
            "Pizza": [
                ("Pizza Margherita", "14.99", 4.6, 38),
                ("Pepperoni Pizza", "16.99", 4.4, 25),
            ],
            "Pasta": [
                ("Pasta Carbonara", "13.99", 4.8, 41),
                ("Penne Arrabbiata", "12.50", 4.1, 12),
            ],
            "Desserts": [
                ("Tiramisu", "7.99", 4.9, 30),
            ],
        },
    },
    {
        "restaurant": RestaurantRecord(
            name="Sakura Sushi",
            address="88 Cherry Lane",
            city="New York",
            cuisine_type="Japanese",
            phone_number="555-201-0002",
            minimum_order=Decimal("20.00"),
            delivery_fee=Decimal("3.50"),
            service_charge_rate=Decimal("0.08"),
            tax_rate=Decimal("0.08875"),
        ),
        "menu": {
            "Rolls": [
                ("California Roll", "9.50", 4.2, 17),
                ("Dragon Roll", "15.00", 4.7, 22),
            ],
            "Soups": [
                ("Miso Soup", "3.99", 0, 0),
            ],
        },
    },
    {
        "restaurant": RestaurantRecord(
            name="Burger Barn",
            address="400 Grill Street",
            city="New York",
            cuisine_type="American",
            minimum_order=Decimal("0.00"),
            delivery_fee=Decimal("4.99"),
            service_charge_rate=Decimal("0"),
            tax_rate=Decimal("0.08875"),
        ),
        "menu": {
            "Burgers": [
                ("Classic Burger", "11.99", 4.0, 9),
                ("Veggie Burger", "10.99", 3.5, 4),
            ],
            "Sides": [
                ("Fries", "3.99", 0, 0),
            ],
        },
    },
]


async def seed() -> bool:
    settings = get_settings()
    gateway = create_gateway(settings)
    hasher = SecretHasher(rounds=settings.token_hash_rounds)

    print("=" * 60)
    print("🌱 SEEDING DATABASE")
    print("=" * 60)

    try:
        await gateway.initialize()

        async with gateway.transaction() as uow:
            existing = await uow.restaurants.list_ids()
        if existing:
            print(f"\n⚠️ {len(existing)} restaurants already present, nothing to do")
            return False

        password_hash = await hasher.hash(DEMO_PASSWORD)

        async with gateway.transaction() as uow:
            first_restaurant_id = None

            for entry in RESTAURANTS:
                restaurant = await uow.restaurants.create(entry["restaurant"])
                first_restaurant_id = first_restaurant_id or restaurant.id
                print(f"\n🍽️  {restaurant.name} (#{restaurant.id})")

                for position, (category_name, dishes) in enumerate(entry["menu"].items()):
                    category = await uow.categories.create(
                        MenuCategoryRecord(
                            restaurant_id=restaurant.id,
                            name=category_name,
                            display_order=position,
                        )
                    )
                    for name, price, rating, count in dishes:
                        await uow.dishes.create(
                            DishRecord(
                                restaurant_id=restaurant.id,
                                category_id=category.id,
                                name=name,
                                price=Decimal(price),
                                average_rating=Decimal(str(rating)),
                                rating_count=count,
                            )
                        )
                        print(f"   - {name}: ${price}")

            for email, name, role, restaurant_id in [
                ("admin@foodhub.dev", "Admin", UserRole.ADMIN, None),
                ("staff@foodhub.dev", "Kitchen Staff", UserRole.RESTAURANT_STAFF, first_restaurant_id),
                ("customer@foodhub.dev", "Demo Customer", UserRole.CUSTOMER, None),
            ]:
                user = await uow.users.create(
                    UserRecord(
                        email=email,
                        name=name,
                        password_hash=password_hash,
                        role=role,
                        restaurant_id=restaurant_id,
                        address="350 Fifth Avenue, New York",
                    )
                )
                print(f"\n👤 {user.email} ({user.role.value})")

        print("\n" + "=" * 60)
        print(f"✅ SEED COMPLETE (password for all demo users: {DEMO_PASSWORD})")
        print("=" * 60)
        return True
    finally:
        await gateway.close()


if __name__ == "__main__":
    setup_logging()
    asyncio.run(seed())
