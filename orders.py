"""
Cart to order commit and admin order updates.

place_order runs these steps, in order:

1. redeem the discount code (conditional usage_count increment)
2. reserve stock for every line (conditional decrement)
3. insert the order with a frozen copy of the cart lines
4. delete the cart, provided nobody wrote to it since it was priced

Each completed step registers an undo. If a later step fails the undos run
newest first and the original error is re-raised, so a failed checkout
leaves no order, no consumed stock and no consumed code behind.
"""
import logging
import time
from datetime import datetime
from functools import partial
from typing import Any, Callable, Dict, List, Optional, Tuple

from pymongo import DESCENDING, ReturnDocument
from pymongo.database import Database

from catalog import get_product, reserve_stock, restore_stock
from database import oid, utcnow
from discounts import redeem_code, release_code, resolve_code
from errors import AuthorizationError, EmptyCart, OrderNotFound, PersistenceError
from pricing import items_price, order_total
from schemas import AppliedDiscount, Cart, Order, OrderItem, PaymentResult, ShippingAddress

logger = logging.getLogger(__name__)


def _rollback(order_ref: str, compensations: List[Tuple[str, Callable[[], None]]]) -> None:
    for name, undo in reversed(compensations):
        try:
            undo()
        except Exception:
            logger.exception("Rollback step '%s' failed for %s", name, order_ref)


def _delete_order(db: Database, order_id) -> None:
    db["order"].delete_one({"_id": order_id})
    logger.info("Deleted order %s during rollback", order_id)


def place_order(db: Database, user_id: str, shipping_address: ShippingAddress, payment_method: str,
                discount_code: Optional[str] = None, now: Optional[datetime] = None) -> Order:
    cart_doc = db["cart"].find_one({"user_id": user_id})
    cart = Cart.from_mongo(cart_doc)
    if cart is None or not cart.items:
        raise EmptyCart()

    subtotal = items_price(cart.items)
    resolved = resolve_code(db, discount_code, subtotal, now) if discount_code else None
    order = Order(
        user_id=user_id,
        order_items=[OrderItem(**item.model_dump()) for item in cart.items],
        shipping_address=shipping_address,
        payment_method=payment_method,
        items_price=subtotal,
        discount=AppliedDiscount(code=resolved.code, amount=resolved.amount) if resolved else None,
        total_price=order_total(subtotal, resolved.amount if resolved else None),
    )

    ref = f"checkout of user {user_id}"
    compensations: List[Tuple[str, Callable[[], None]]] = []
    try:
        if resolved:
            redeem_code(db, resolved)
            compensations.append(("release discount code", partial(release_code, db, resolved)))

        for item in order.order_items:
            reserve_stock(db, item.product_id, item.selected_variant, item.quantity)
            compensations.append(
                ("restore stock", partial(restore_stock, db, item.product_id, item.selected_variant, item.quantity))
            )

        created = utcnow()
        inserted_id = db["order"].insert_one({**order.to_mongo(), "created_at": created, "updated_at": created}).inserted_id
        compensations.append(("delete order", partial(_delete_order, db, inserted_id)))
        order = order.model_copy(update={"id": str(inserted_id), "created_at": created, "updated_at": created})

        res = db["cart"].delete_one({"_id": cart_doc["_id"], "version": cart_doc.get("version")})
        if res.deleted_count == 0:
            raise PersistenceError("Your cart changed during checkout, please review it and try again")
    except Exception as exc:
        logger.warning("Rolling back %s after %d step(s): %s", ref, len(compensations), exc)
        _rollback(ref, compensations)
        raise

    logger.info("Placed order %s for user %s, total %.2f", order.id, user_id, order.total_price)
    return order


# ----------------------------------------------------------------------------
# Reads
# ----------------------------------------------------------------------------

def get_order(db: Database, order_id: str) -> Order:
    _id = oid(order_id)
    order = Order.from_mongo(db["order"].find_one({"_id": _id})) if _id else None
    if order is None:
        raise OrderNotFound()
    return order


def get_order_for(db: Database, order_id: str, user_id: str, role: str) -> Order:
    order = get_order(db, order_id)
    if order.user_id != user_id and role != "admin":
        raise AuthorizationError("Not authorized to view this order")
    return order


def list_user_orders(db: Database, user_id: str) -> List[Order]:
    cursor = db["order"].find({"user_id": user_id}, sort=[("created_at", DESCENDING)])
    return [Order.from_mongo(doc) for doc in cursor]


def list_orders(db: Database) -> List[Order]:
    return [Order.from_mongo(doc) for doc in db["order"].find({}, sort=[("created_at", DESCENDING)])]


def variant_details(db: Database, order: Order) -> List[List[Dict[str, Any]]]:
    """Variation and option names for each line, looked up from the live catalog."""
    details = []
    for item in order.order_items:
        entry: List[Dict[str, Any]] = []
        product = get_product(db, item.product_id) if item.selected_variant else None
        found = product.find_sku(item.selected_variant) if product else None
        if found:
            variation, option, _ = found
            entry.append({"variation_name": variation.name.model_dump(), "option_name": option.name.model_dump()})
        details.append(entry)
    return details


# ----------------------------------------------------------------------------
# Admin updates
# ----------------------------------------------------------------------------

def _update_order(db: Database, order_id: str, fields: Dict[str, Any]) -> Order:
    _id = oid(order_id)
    doc = None
    if _id is not None:
        doc = db["order"].find_one_and_update(
            {"_id": _id},
            {"$set": {**fields, "updated_at": utcnow()}},
            return_document=ReturnDocument.AFTER,
        )
    if doc is None:
        raise OrderNotFound()
    return Order.from_mongo(doc)


def mark_paid(db: Database, order_id: str, payment_result: Optional[Dict[str, Any]] = None) -> Order:
    now = utcnow()
    payload = {k: v for k, v in (payment_result or {}).items() if v is not None}
    result = PaymentResult(
        id=payload.get("id") or f"ADMIN_PAID_{int(time.time() * 1000)}",
        status=payload.get("status") or "COMPLETED",
        update_time=payload.get("update_time") or now.isoformat(),
        email_address=payload.get("email_address"),
    )
    order = _update_order(db, order_id, {"is_paid": True, "paid_at": now, "payment_result": result.model_dump()})
    logger.info("Order %s marked paid (%s)", order_id, result.id)
    return order


def mark_delivered(db: Database, order_id: str) -> Order:
    order = _update_order(db, order_id, {"is_delivered": True, "delivered_at": utcnow()})
    logger.info("Order %s marked delivered", order_id)
    return order
