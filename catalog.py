"""
Product lookups and stock counters.

Stock is only ever changed with a conditional update, so two orders racing
for the last units cannot both succeed and the counter never drops below
zero.
"""
import logging
from typing import Any, Dict, Iterable, Optional, Set, Tuple

from pymongo import ReturnDocument
from pymongo.database import Database

from config import STOCK_WRITE_RETRIES
from database import oid, utcnow
from errors import AlreadyReviewed, InsufficientStock, PersistenceError, ProductNotFound, VariantNotFound
from schemas import Product, Review

logger = logging.getLogger(__name__)


def get_product(db: Database, product_id: str) -> Optional[Product]:
    _id = oid(product_id)
    if _id is None:
        return None
    return Product.from_mongo(db["product"].find_one({"_id": _id}))


def load_product(db: Database, product_id: str) -> Product:
    product = get_product(db, product_id)
    if product is None:
        raise ProductNotFound()
    return product


def live_product_ids(db: Database, product_ids: Iterable[str]) -> Set[str]:
    ids = [x for x in (oid(p) for p in set(product_ids)) if x is not None]
    if not ids:
        return set()
    return {str(doc["_id"]) for doc in db["product"].find({"_id": {"$in": ids}}, {"_id": 1})}


def _stock_query(product: Product, sku_id: Optional[str]) -> Tuple[str, Dict[str, Any]]:
    """Stock field to update and the filter that pins it to this product and SKU."""
    query: Dict[str, Any] = {"_id": oid(product.id)}
    if not sku_id:
        return "stock", query
    path = product.sku_path(sku_id)
    if path is None:
        raise VariantNotFound()
    query[f"{path}.id"] = sku_id
    return f"{path}.stock", query


def _available(product: Product, sku_id: Optional[str]) -> int:
    if not sku_id:
        return product.stock
    return product.find_sku(sku_id)[2].stock


def reserve_stock(db: Database, product_id: str, sku_id: Optional[str], quantity: int) -> None:
    """Take ``quantity`` units off the SKU (or the product when no SKU is given)."""
    for _ in range(STOCK_WRITE_RETRIES):
        product = load_product(db, product_id)
        field, query = _stock_query(product, sku_id)
        if _available(product, sku_id) < quantity:
            raise InsufficientStock(f"Insufficient stock for {product.name.en or product.id}")

        query[field] = {"$gte": quantity}
        res = db["product"].update_one(query, {"$inc": {field: -quantity}, "$set": {"updated_at": utcnow()}})
        if res.matched_count:
            logger.info("Reserved %s unit(s) of product %s sku %s", quantity, product_id, sku_id)
            return
        logger.info("Stock write conflict on product %s sku %s, retrying", product_id, sku_id)
    raise PersistenceError("Could not update stock, please retry")


def restore_stock(db: Database, product_id: str, sku_id: Optional[str], quantity: int) -> None:
    product = get_product(db, product_id)
    if product is None:
        logger.warning("Cannot restore stock, product %s no longer exists", product_id)
        return
    if sku_id and product.sku_path(sku_id) is None:
        logger.warning("Cannot restore stock, sku %s no longer exists on product %s", sku_id, product_id)
        return
    field, query = _stock_query(product, sku_id)
    db["product"].update_one(query, {"$inc": {field: quantity}, "$set": {"updated_at": utcnow()}})
    logger.info("Restored %s unit(s) of product %s sku %s", quantity, product_id, sku_id)


# ----------------------------------------------------------------------------
# Reviews
# ----------------------------------------------------------------------------

def add_review(db: Database, product_id: str, user_id: str, name: str, rating: int, comment: str = "") -> Product:
    """
    Attach one review per user and refresh ``num_reviews`` / ``average_rating``.

    The push only matches while the user has no review on the product. The
    average is then written only if no other review landed in between; when
    one did, that writer's own refresh covers ours.
    """
    product = load_product(db, product_id)
    review = Review(user_id=user_id, name=name, rating=rating, comment=comment, created_at=utcnow())
    doc = db["product"].find_one_and_update(
        {"_id": oid(product.id), "reviews.user_id": {"$ne": user_id}},
        {"$push": {"reviews": review.model_dump()}, "$inc": {"num_reviews": 1}},
        return_document=ReturnDocument.AFTER,
    )
    if doc is None:
        raise AlreadyReviewed()

    ratings = [r["rating"] for r in doc["reviews"]]
    average = sum(ratings) / len(ratings)
    db["product"].update_one(
        {"_id": doc["_id"], "num_reviews": doc["num_reviews"]},
        {"$set": {"num_reviews": len(ratings), "average_rating": average, "updated_at": utcnow()}},
    )
    logger.info("User %s reviewed product %s with %s star(s)", user_id, product_id, rating)
    return Product.from_mongo({**doc, "num_reviews": len(ratings), "average_rating": average})
