"""
Discount code resolution and redemption.

``resolve_code`` is read-only. ``redeem_code`` is the conditional
``usage_count`` increment run while an order is being committed, and
``release_code`` undoes it when the commit is rolled back.
"""
import logging
from datetime import datetime
from decimal import Decimal
from typing import Optional

from bson import ObjectId
from pydantic import BaseModel
from pymongo.database import Database

from database import as_utc, utcnow
from errors import CodeExpired, CodeNotFound, MinOrderNotMet, UsageLimitReached
from pricing import HUNDRED, Number, round2, to_decimal
from schemas import DiscountCode

logger = logging.getLogger(__name__)


class ResolvedDiscount(BaseModel):
    discount_id: str
    code: str
    amount: float
    usage_limit: Optional[int] = None


def discount_amount(discount: DiscountCode, order_subtotal: Number) -> Decimal:
    subtotal = to_decimal(order_subtotal)
    if discount.percentage is not None:
        amount = subtotal * to_decimal(discount.percentage) / HUNDRED
        if discount.max_discount_amount is not None:
            amount = min(amount, to_decimal(discount.max_discount_amount))
    else:
        amount = min(to_decimal(discount.fixed_amount), subtotal)
    return round2(amount)


def resolve_code(db: Database, code: str, order_subtotal: Number, now: Optional[datetime] = None) -> ResolvedDiscount:
    now = as_utc(now) if now is not None else utcnow()
    discount = DiscountCode.from_mongo(db["discount"].find_one({"code": code}))
    if discount is None or not discount.is_active:
        raise CodeNotFound()
    if (discount.start_date and now < discount.start_date) or (discount.end_date and now > discount.end_date):
        raise CodeExpired()
    if discount.min_order_amount is not None and to_decimal(order_subtotal) < to_decimal(discount.min_order_amount):
        raise MinOrderNotMet(f"Minimum order amount for this code is {discount.min_order_amount:.2f}")
    if discount.usage_limit is not None and discount.usage_count >= discount.usage_limit:
        raise UsageLimitReached()

    return ResolvedDiscount(
        discount_id=discount.id,
        code=discount.code,
        amount=float(discount_amount(discount, order_subtotal)),
        usage_limit=discount.usage_limit,
    )


def redeem_code(db: Database, resolved: ResolvedDiscount) -> None:
    query = {"_id": ObjectId(resolved.discount_id), "is_active": True}
    if resolved.usage_limit is not None:
        query["usage_count"] = {"$lt": resolved.usage_limit}
    res = db["discount"].update_one(query, {"$inc": {"usage_count": 1}, "$set": {"updated_at": utcnow()}})
    if res.matched_count == 0:
        logger.info("Discount code %s could not be redeemed, limit reached or deactivated", resolved.code)
        raise UsageLimitReached()
    logger.info("Redeemed discount code %s", resolved.code)


def release_code(db: Database, resolved: ResolvedDiscount) -> None:
    db["discount"].update_one(
        {"_id": ObjectId(resolved.discount_id), "usage_count": {"$gt": 0}},
        {"$inc": {"usage_count": -1}, "$set": {"updated_at": utcnow()}},
    )
    logger.info("Released discount code %s", resolved.code)
