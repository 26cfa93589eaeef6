"""
Order Verification Script

Verifies data integrity of the stored orders after a simulation:
    - total_amount equals the sum of its four components
    - every line subtotal equals quantity x price_at_order
    - order numbers are well formed and unique
Run from project root: python scripts/verify.py

Author: Khalil Bannouri
Version: 1.0.0
"""

import asyncio
import os
import sys
from datetime import datetime

# Add parent directory to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import pandas as pd

from foodhub.services.orders.numbering import ORDER_NUMBER_PATTERN
from foodhub.storage import create_gateway
from foodhub.storage.base import OrderFilter, PageRequest

PAGE_SIZE = 500


async def load_orders() -> tuple[pd.DataFrame, pd.DataFrame]:
    """Read every order and line through the gateway into DataFrames."""
    gateway = create_gateway()
    orders, items = [], []
    try:
        page = 1
        while True:
            async with gateway.transaction() as uow:
                result = await uow.orders.list(
                    OrderFilter(include_items=True),
                    PageRequest(page=page, limit=PAGE_SIZE),
                )
            for order in result.items:
                orders.append({
                    "order_id": order.id,
                    "order_number": order.order_number,
                    "status": order.status.value,
                    "subtotal": order.subtotal,
                    "delivery_fee": order.delivery_fee,
                    "service_charge": order.service_charge,
                    "tax_amount": order.tax_amount,
                    "total_amount": order.total_amount,
                })
                for item in order.items:
                    items.append({
                        "order_id": order.id,
                        "dish_id": item.dish_id,
                        "quantity": item.quantity,
                        "price_at_order": item.price_at_order,
                        "subtotal": item.subtotal,
                    })
            if page >= result.total_pages:
                break
            page += 1
    finally:
        await gateway.close()

    return pd.DataFrame(orders), pd.DataFrame(items)


def verify_orders() -> bool:
    """Verify stored order integrity."""

    print("=" * 60)
    print("🔍 ORDER VERIFICATION REPORT")
    print("=" * 60)
    print(f"⏰ Timestamp: {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}")
    print("=" * 60)

    try:
        df, items = asyncio.run(load_orders())
    except Exception as e:
        print(f"\n❌ Could not read orders: {e}")
        return False

    if df.empty:
        print("\n❌ No orders found!")
        print("   Run the simulation first: python scripts/simulate.py")
        return False

    ok = True

    # Statistics
    print(f"\n📊 STATISTICS:")
    print(f"   Total Orders: {len(df)}")
    print(f"   Total Lines: {len(items)}")
    print(f"   By Status: {df['status'].value_counts().to_dict()}")

    # Money invariant (Decimal columns, exact comparison)
    components = df["subtotal"] + df["delivery_fee"] + df["service_charge"] + df["tax_amount"]
    mismatched = df[components != df["total_amount"]]
    if len(mismatched) > 0:
        ok = False
        print(f"\n⚠️ {len(mismatched)} orders where total != sum of components!")
        print(mismatched[["order_number", "total_amount"]].head(5).to_string(index=False))
    else:
        print(f"\n✅ All totals equal subtotal + fee + service charge + tax")

    # Line subtotals
    if not items.empty:
        expected = items["price_at_order"] * items["quantity"]
        bad_lines = items[expected != items["subtotal"]]
        if len(bad_lines) > 0:
            ok = False
            print(f"⚠️ {len(bad_lines)} lines where subtotal != quantity x price!")
        else:
            print(f"✅ All line subtotals consistent")

    # Order numbers
    malformed = df[~df["order_number"].apply(lambda n: bool(ORDER_NUMBER_PATTERN.match(n)))]
    duplicates = df["order_number"].duplicated().sum()
    if len(malformed) > 0:
        ok = False
        print(f"⚠️ {len(malformed)} malformed order numbers!")
    if duplicates > 0:
        ok = False
        print(f"⚠️ {duplicates} duplicate order numbers found!")
    else:
        print(f"✅ No duplicate order numbers")

    # Revenue
    total = sum(df["total_amount"])
    print(f"\n💰 REVENUE:")
    print(f"   Total: ${total:.2f}")
    print(f"   Average: ${total / len(df):.2f}")

    # Sample data
    print(f"\n📋 RECENT ORDERS:")
    print("-" * 60)
    cols = ["order_number", "status", "total_amount"]
    print(df[cols].head(5).to_string(index=False))

    print("\n" + "=" * 60)
    print("✅ VERIFICATION COMPLETE" if ok else "❌ VERIFICATION FAILED")
    print("=" * 60)

    return ok


if __name__ == "__main__":
    sys.exit(0 if verify_orders() else 1)
