"""
Chaos Simulation Script

Fires concurrent order placements at a running API and checks that every
successful order received a distinct order number.
Run from project root (after scripts/seed.py): python scripts/simulate.py

Author: Khalil Bannouri
Version: 1.0.0
"""

import argparse
import asyncio
import random
import sys
import time
from collections import Counter
from datetime import datetime
from decimal import Decimal
from typing import Any, Optional

import httpx

# Windows event loop fix
if sys.platform == "win32":
    asyncio.set_event_loop_policy(asyncio.WindowsSelectorEventLoopPolicy())

# Configuration
API_BASE_URL = "http://localhost:8001"
TOTAL_ORDERS = 50
CUSTOMER_EMAIL = "customer@foodhub.dev"
CUSTOMER_PASSWORD = "Passw0rd!"
SEEDED_DISH_IDS = [1, 2, 3, 4, 5]  # First restaurant of scripts/seed.py

STREETS = ["Main St", "Broadway", "5th Avenue", "Park Ave", "Madison Ave", "Lexington Ave", "Amsterdam Ave"]
INSTRUCTIONS = [None, "Extra napkins", "Ring doorbell", "Leave at door", "Call on arrival"]


async def login(client: httpx.AsyncClient, email: str, password: str) -> dict[str, str]:
    """Log in and return the token pair."""
    response = await client.post(
        f"{API_BASE_URL}/api/auth/login",
        json={"email": email, "password": password},
        headers={"User-Agent": "foodhub-simulator"},
    )
    response.raise_for_status()
    return response.json()["data"]["tokens"]


def generate_order_payload(restaurant_id: int, dish_ids: list[int]) -> dict[str, Any]:
    """Random order for /api/orders."""
    chosen = random.sample(dish_ids, k=random.randint(1, min(3, len(dish_ids))))
    return {
        "restaurant_id": restaurant_id,
        "items": [
            {"dish_id": dish_id, "quantity": random.randint(1, 3)}
            for dish_id in chosen
        ],
        "delivery_address": f"{random.randint(1, 999)} {random.choice(STREETS)}",
        "delivery_instructions": random.choice(INSTRUCTIONS),
    }


async def send_order(
    client: httpx.AsyncClient,
    token: str,
    order_num: int,
    restaurant_id: int,
    dish_ids: list[int],
) -> dict[str, Any]:
    """Place one order."""
    payload = generate_order_payload(restaurant_id, dish_ids)
    start_time = time.time()

    try:
        response = await client.post(
            f"{API_BASE_URL}/api/orders",
            json=payload,
            headers={"Authorization": f"Bearer {token}"},
            timeout=30.0,
        )
        elapsed = round(time.time() - start_time, 3)

        if response.status_code == 201:
            data = response.json()["data"]
            return {
                "order_num": order_num,
                "success": True,
                "order_id": data["id"],
                "order_number": data["order_number"],
                "total": Decimal(data["total_amount"]),
                "time": elapsed,
            }
        return {
            "order_num": order_num,
            "success": False,
            "error": response.text[:100],
            "time": elapsed,
        }
    except Exception as e:
        elapsed = round(time.time() - start_time, 3)
        return {
            "order_num": order_num,
            "success": False,
            "error": str(e)[:100],
            "time": elapsed,
        }


# =============================================================================
# MAIN SIMULATION RUNNER
# =============================================================================

async def run_simulation(
    num_orders: int = TOTAL_ORDERS,
    restaurant_id: int = 1,
    dish_ids: Optional[list[int]] = None,
) -> dict[str, Any]:
    """
    Run the chaos simulation.

    Args:
        num_orders: Number of concurrent orders
        restaurant_id: Restaurant to order from
        dish_ids: Dishes of that restaurant to pick from
    """
    print("=" * 70)
    print("🔥 CHAOS SIMULATION - HIGH CONCURRENCY TEST")
    print("=" * 70)
    print(f"📋 Total Orders: {num_orders}")
    print(f"🎯 Target: {API_BASE_URL}")
    print(f"⏰ Started: {datetime.now().strftime('%H:%M:%S')}")
    print("=" * 70)

    start_time = time.time()

    async with httpx.AsyncClient() as client:
        tokens = await login(client, CUSTOMER_EMAIL, CUSTOMER_PASSWORD)
        token = tokens["access_token"]
        dish_ids = dish_ids or SEEDED_DISH_IDS

        print("\n🚀 Firing orders...\n")
        tasks = [
            send_order(client, token, i + 1, restaurant_id, dish_ids)
            for i in range(num_orders)
        ]
        results = await asyncio.gather(*tasks)

    total_time = round(time.time() - start_time, 2)

    # Analyze results
    successful = [r for r in results if r["success"]]
    failed = [r for r in results if not r["success"]]
    number_counts = Counter(r["order_number"] for r in successful)
    duplicates = {number: count for number, count in number_counts.items() if count > 1}

    print("\n" + "=" * 70)
    print("📊 SIMULATION RESULTS")
    print("=" * 70)

    print(f"\n✅ Successful Orders: {len(successful)}/{num_orders}")
    print(f"❌ Failed Orders: {len(failed)}/{num_orders}")
    print(f"⏱️  Total Time: {total_time}s")

    if successful:
        avg_time = round(sum(r["time"] for r in successful) / len(successful), 3)
        total_revenue = sum((r["total"] for r in successful), Decimal("0.00"))

        print(f"\n📈 Performance Metrics:")
        print(f"   Average Response: {avg_time}s")
        print(f"   Fastest: {min(r['time'] for r in successful)}s")
        print(f"   Slowest: {max(r['time'] for r in successful)}s")
        print(f"   💰 Total Revenue: ${total_revenue}")

    if duplicates:
        print(f"\n🚨 DUPLICATE ORDER NUMBERS: {duplicates}")
    else:
        print(f"\n✅ All {len(successful)} order numbers are unique")

    if failed:
        print(f"\n⚠️  Failed Order Details (showing first 5):")
        for f in failed[:5]:
            print(f"   Order #{f['order_num']}: {f.get('error', 'Unknown error')}")

    print("\n" + "=" * 70)
    print("🔍 VERIFICATION STEPS")
    print("=" * 70)
    print("1. Run: python scripts/verify.py")
    print("2. Check /health for database and redis status")
    print("=" * 70)

    return {
        "total": num_orders,
        "successful": len(successful),
        "failed": len(failed),
        "duplicates": duplicates,
        "total_time": total_time,
        "results": results,
    }


async def test_single_flows(restaurant_id: int, dish_ids: list[int]) -> Optional[bool]:
    """Test individual flows before chaos simulation."""
    print("\n" + "=" * 70)
    print("🧪 TESTING INDIVIDUAL FLOWS")
    print("=" * 70)

    async with httpx.AsyncClient() as client:
        # Test 1: Health check
        print("\n1️⃣ Health Check...")
        response = await client.get(f"{API_BASE_URL}/health")
        if response.status_code == 200:
            data = response.json()
            print(f"   ✅ Status: {data.get('status')}")
            print(f"   Database: {data.get('database')}")
            print(f"   Redis: {data.get('redis')}")
        else:
            print(f"   ❌ Failed: {response.text}")
            return False

        # Test 2: Login and refresh rotation
        print("\n2️⃣ Login + Refresh Rotation...")
        tokens = await login(client, CUSTOMER_EMAIL, CUSTOMER_PASSWORD)
        rotated = await client.post(
            f"{API_BASE_URL}/api/auth/refresh",
            json={"refresh_token": tokens["refresh_token"]},
        )
        replayed = await client.post(
            f"{API_BASE_URL}/api/auth/refresh",
            json={"refresh_token": tokens["refresh_token"]},
        )
        print(f"   Rotation: {rotated.status_code} (expected 200)")
        print(f"   Replay of rotated token: {replayed.status_code} (expected 401)")

        # Test 3: Single order
        print("\n3️⃣ Single Order...")
        tokens = await login(client, CUSTOMER_EMAIL, CUSTOMER_PASSWORD)
        result = await send_order(
            client,
            tokens["access_token"],
            0,
            restaurant_id,
            dish_ids,
        )
        if result["success"]:
            print(f"   ✅ Order {result['order_number']} created")
            print(f"   Total: ${result['total']}")
        else:
            print(f"   ⚠️ Response: {result['error']}")

    print("\n" + "=" * 70)
    return True


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Chaos Simulation Script")
    parser.add_argument("--orders", type=int, default=TOTAL_ORDERS, help="Number of orders")
    parser.add_argument("--restaurant", type=int, default=1, help="Restaurant id")
    parser.add_argument(
        "--dishes",
        default=",".join(str(d) for d in SEEDED_DISH_IDS),
        help="Comma-separated dish ids of the restaurant",
    )
    parser.add_argument("--skip-tests", action="store_true", help="Skip individual tests")
    args = parser.parse_args()
    dish_ids = [int(d) for d in args.dishes.split(",") if d.strip()]

    # Run tests first
    if not args.skip_tests:
        success = asyncio.run(test_single_flows(args.restaurant, dish_ids))
        if not success:
            print("\n❌ Pre-flight tests failed. Fix issues before running simulation.")
            sys.exit(1)

        print("\n✅ Pre-flight tests passed!")

    # Run simulation
    summary = asyncio.run(run_simulation(args.orders, args.restaurant, dish_ids))
    sys.exit(1 if summary["duplicates"] else 0)
