"""
Cart and wishlist mutations on the lists embedded in a user document.

The helpers return new lists and never touch the database; the routes
persist the result with a single $set.
"""
from typing import Dict, List, Optional, Tuple

from catalog import map_product


def add_line(cart: List[dict], product_id: str, quantity: int = 1) -> List[dict]:
    """Merge `quantity` into the line for `product_id`, appending one if absent."""
    lines = [dict(line) for line in cart]
    for line in lines:
        if line["product_id"] == product_id:
            line["quantity"] = int(line.get("quantity", 0)) + int(quantity)
            return lines
    lines.append({"product_id": product_id, "quantity": int(quantity)})
    return lines


def set_line(cart: List[dict], product_id: str, quantity: int) -> List[dict]:
    """Set a line's quantity; zero or less drops the line.

    Raises LookupError when the cart has no line for `product_id`.
    """
    if not any(line["product_id"] == product_id for line in cart):
        raise LookupError(product_id)
    if quantity <= 0:
        return remove_line(cart, product_id)
    return [
        {**line, "quantity": int(quantity)} if line["product_id"] == product_id else dict(line)
        for line in cart
    ]


def remove_line(cart: List[dict], product_id: str) -> List[dict]:
    return [dict(line) for line in cart if line["product_id"] != product_id]


def toggle(wishlist: List[str], product_id: str) -> Tuple[List[str], bool]:
    if product_id in wishlist:
        return [pid for pid in wishlist if pid != product_id], False
    return list(wishlist) + [product_id], True


def detailed_cart(cart: List[dict], products: Dict[str, dict]) -> List[dict]:
    """Cart lines with the live product attached (None once a product is gone)."""
    return [
        {
            "product_id": line["product_id"],
            "quantity": line["quantity"],
            "product": map_product(products.get(line["product_id"])),
        }
        for line in cart
    ]


def cart_view(cart: Optional[List[dict]]) -> List[dict]:
    return [{"product_id": line["product_id"], "quantity": line["quantity"]} for line in cart or []]
