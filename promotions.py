"""
Advertisement-based product markdowns.

A promotion is live for a product when it references the product, is
active, has a positive percentage and ``now`` falls inside
``[start_date, end_date]``. A missing bound leaves that side open.
"""
import logging
from datetime import datetime
from typing import Any, Dict, Optional

from pymongo import DESCENDING
from pymongo.database import Database

from database import as_utc, utcnow
from schemas import Advertisement

logger = logging.getLogger(__name__)


def active_promotion_filter(product_id: str, now: datetime) -> Dict[str, Any]:
    return {
        "product_ref": product_id,
        "is_active": True,
        "discount_percentage": {"$gt": 0},
        "$and": [
            {"$or": [{"start_date": None}, {"start_date": {"$lte": now}}]},
            {"$or": [{"end_date": None}, {"end_date": {"$gte": now}}]},
        ],
    }


def is_promotion_active(ad: Advertisement, product_id: str, now: datetime) -> bool:
    now = as_utc(now)
    if not ad.is_active or ad.product_ref != product_id or ad.discount_percentage <= 0:
        return False
    if ad.start_date is not None and now < ad.start_date:
        return False
    if ad.end_date is not None and now > ad.end_date:
        return False
    return True


def find_active_promotion(db: Database, product_id: str, now: Optional[datetime] = None) -> Optional[Advertisement]:
    """
    Most recently created live promotion for ``product_id``, or None.

    Nothing stops an admin from attaching two overlapping promotions to the
    same product, so the newest one wins.
    """
    now = as_utc(now) if now is not None else utcnow()
    doc = db["advertisement"].find_one(
        active_promotion_filter(product_id, now),
        sort=[("created_at", DESCENDING), ("_id", DESCENDING)],
    )
    promotion = Advertisement.from_mongo(doc)
    if promotion is not None:
        logger.debug("Promotion %s (%s%%) applies to product %s", promotion.id, promotion.discount_percentage, product_id)
    return promotion
