"""
Checkout and order moderation.

Orders live inside the owning user's document (`user.orders`). Each order
is a snapshot: item names, images and prices are copied from the catalog at
checkout so later product edits or deletes never alter it.
"""
import logging
from datetime import datetime, timezone
from typing import Dict, List

from bson import ObjectId

from database import db, get_documents
from schemas import Customer, Order, OrderItem

logger = logging.getLogger(__name__)

CITY_FEES = {
    "Kathmandu": 3.5,
    "Pokhara": 4.5,
    "Lalitpur": 3.0,
    "Bhaktapur": 3.0,
    "Biratnagar": 5.0,
    "Butwal": 4.0,
}
DEFAULT_DELIVERY_FEE = 5.0


def shipping_cities() -> List[dict]:
    return [{"name": name, "fee": fee} for name, fee in CITY_FEES.items()]


def delivery_fee_for(city: str) -> float:
    return CITY_FEES.get(city, DEFAULT_DELIVERY_FEE)


def build_order(cart: List[dict], products: Dict[str, dict], customer: Customer) -> Order:
    """Snapshot `cart` against the current catalog into a pending order.

    A line whose product no longer exists is kept at price 0.
    """
    items = []
    subtotal = 0.0
    for line in cart:
        product = products.get(line["product_id"]) or {}
        price = float(product.get("price") or 0)
        quantity = int(line["quantity"])
        subtotal += price * quantity
        items.append(
            OrderItem(
                product_id=line["product_id"],
                name=product.get("name"),
                image=product.get("image"),
                price=price,
                quantity=quantity,
            )
        )
    subtotal = round(subtotal, 2)
    fee = delivery_fee_for(customer.address.city)
    return Order(
        items=items,
        subtotal=subtotal,
        delivery_fee=fee,
        grand_total=round(subtotal + fee, 2),
        customer=customer,
    )


def place_order(user: dict, order: Order):
    """Append the order and empty the cart in one write on the user document."""
    db["user"].update_one(
        {"_id": user["_id"]},
        {
            "$push": {"orders": order.model_dump()},
            "$set": {"cart": [], "updated_at": datetime.now(timezone.utc)},
        },
    )
    logger.info(
        "Order %s placed by %s: %s item(s), grand total %.2f",
        order.id, user.get("username"), len(order.items), order.grand_total,
    )


def serialize_order(order: dict) -> dict:
    out = dict(order)
    if isinstance(out.get("id"), ObjectId):
        out["id"] = str(out["id"])
    if isinstance(out.get("created_at"), datetime):
        out["created_at"] = out["created_at"].isoformat()
    return out


def all_orders() -> List[dict]:
    """Every user's orders in one list, tagged with the owner."""
    flattened = []
    for user in get_documents("user"):
        for order in user.get("orders", []):
            entry = serialize_order(order)
            entry["order_id"] = entry.pop("id", None)
            entry.update({
                "user_id": str(user["_id"]),
                "username": user.get("username"),
                "email": user.get("email"),
            })
            flattened.append(entry)
    return flattened


def set_order_status(order_id: ObjectId, status: str) -> bool:
    result = db["user"].update_one(
        {"orders.id": order_id},
        {"$set": {"orders.$.status": status, "updated_at": datetime.now(timezone.utc)}},
    )
    if result.matched_count != 1:
        return False
    logger.info("Order %s status set to %s", order_id, status)
    return True


def delete_order(order_id: ObjectId) -> bool:
    result = db["user"].update_one(
        {"orders.id": order_id},
        {
            "$pull": {"orders": {"id": order_id}},
            "$set": {"updated_at": datetime.now(timezone.utc)},
        },
    )
    if result.matched_count != 1:
        return False
    logger.info("Order %s deleted", order_id)
    return True
