"""
Saved products per user.

The wishlist is a list of product ids embedded in the user document. Reads
return the live products in the order they were saved, each with its current
promotion (or None) attached. Ids of deleted products are skipped.
"""
import logging
from typing import Any, Dict, List

from pymongo.database import Database

from catalog import load_product
from database import oid, utcnow
from promotions import find_active_promotion
from schemas import Product

logger = logging.getLogger(__name__)


def _saved_ids(db: Database, user_id: str) -> List[str]:
    doc = db["user"].find_one({"_id": oid(user_id)}, {"wishlist": 1})
    return doc.get("wishlist", []) if doc else []


def get_wishlist(db: Database, user_id: str) -> List[Dict[str, Any]]:
    ids = _saved_ids(db, user_id)
    object_ids = [x for x in (oid(p) for p in ids) if x is not None]
    found = {str(doc["_id"]): doc for doc in db["product"].find({"_id": {"$in": object_ids}})} if object_ids else {}

    now = utcnow()
    entries = []
    for product_id in ids:
        if product_id not in found:
            continue
        product = Product.from_mongo(found[product_id])
        promotion = find_active_promotion(db, product_id, now)
        data = product.model_dump(mode="json")
        data["advertisement"] = promotion.model_dump(mode="json") if promotion else None
        entries.append(data)
    return entries


def add(db: Database, user_id: str, product_id: str) -> List[Dict[str, Any]]:
    load_product(db, product_id)
    db["user"].update_one(
        {"_id": oid(user_id)},
        {"$addToSet": {"wishlist": product_id}, "$set": {"updated_at": utcnow()}},
    )
    logger.info("User %s saved product %s", user_id, product_id)
    return get_wishlist(db, user_id)


def remove(db: Database, user_id: str, product_id: str) -> List[Dict[str, Any]]:
    db["user"].update_one(
        {"_id": oid(user_id)},
        {"$pull": {"wishlist": product_id}, "$set": {"updated_at": utcnow()}},
    )
    return get_wishlist(db, user_id)
