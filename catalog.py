"""
Product catalog: slugs, lookups and the cascading delete.
"""
import logging
import re
import unicodedata
from datetime import datetime, timezone
from typing import Dict, Iterable, List, Optional

from bson import ObjectId
from bson.errors import InvalidId

from database import db

logger = logging.getLogger(__name__)


def slugify(text) -> str:
    value = unicodedata.normalize("NFKD", str(text)).encode("ascii", "ignore").decode("ascii")
    value = value.lower().strip()
    value = re.sub(r"[^a-z0-9\s_-]", "", value)
    value = re.sub(r"[\s_-]+", "-", value)
    return value.strip("-")


def slug_exists(slug: str) -> bool:
    return db["product"].find_one({"slug": slug}, {"_id": 1}) is not None


def generate_unique_slug(name) -> str:
    """Slug for `name`, suffixed -2, -3, ... until no product uses it."""
    base = slugify(name or "item") or "item"
    candidate = base
    counter = 2
    while slug_exists(candidate):
        candidate = f"{base}-{counter}"
        counter += 1
    return candidate


def exact_ci(value: str) -> dict:
    return {"$regex": f"^{re.escape(value.strip())}$", "$options": "i"}


def map_product(doc: Optional[dict]) -> Optional[dict]:
    if not doc:
        return None
    return {
        "id": str(doc["_id"]),
        "slug": doc.get("slug"),
        "name": doc.get("name"),
        "price": doc.get("price"),
        "category": doc.get("category"),
        "image": doc.get("image"),
    }


def list_products(category: Optional[str] = None) -> List[dict]:
    query = {}
    if category:
        query["category"] = exact_ci(category)
    return [map_product(d) for d in db["product"].find(query)]


def search_products(q: str) -> List[dict]:
    q = (q or "").strip()
    if not q:
        return []
    pattern = {"$regex": re.escape(q), "$options": "i"}
    docs = db["product"].find({"$or": [{"name": pattern}, {"slug": pattern}, {"category": pattern}]})
    return [map_product(d) for d in docs]


def find_by_name(name: str) -> Optional[dict]:
    return db["product"].find_one({"name": exact_ci(name)})


def products_by_ids(ids: Iterable[str]) -> Dict[str, dict]:
    """Current product documents keyed by id string; unknown or malformed ids are skipped."""
    oids = []
    for pid in ids:
        try:
            oids.append(ObjectId(pid))
        except (InvalidId, TypeError):
            continue
    if not oids:
        return {}
    return {str(d["_id"]): d for d in db["product"].find({"_id": {"$in": oids}})}


def delete_product(doc: dict) -> int:
    """Remove a product and strip its id from every cart and wishlist.

    Orders keep their snapshot items. Returns the number of users touched.
    """
    pid = str(doc["_id"])
    db["product"].delete_one({"_id": doc["_id"]})
    result = db["user"].update_many(
        {"$or": [{"cart.product_id": pid}, {"wishlist": pid}]},
        {
            "$pull": {"cart": {"product_id": pid}, "wishlist": pid},
            "$set": {"updated_at": datetime.now(timezone.utc)},
        },
    )
    touched = result.modified_count
    logger.info("Product %s deleted, removed from %s user(s)", pid, touched)
    return touched
