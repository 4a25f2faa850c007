"""
Per-user cart.

Each line keeps the unit price, name, image and stock as they were when the
line was last written. Reads never reprice; only add_item and update_item
recompute the snapshot.

Writes are optimistic: the cart is read, changed in memory and written back
only if its ``version`` is unchanged, otherwise the whole step is retried.
"""
import logging
from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Any, Callable, Optional

from pymongo.database import Database
from pymongo.errors import DuplicateKeyError

from catalog import live_product_ids, load_product
from config import CART_WRITE_RETRIES
from database import utcnow
from errors import InvalidQuantity, ItemNotFound, PersistenceError, VariantNotFound, VariantRequired
from pricing import compute_line_price
from promotions import find_active_promotion
from schemas import Cart, CartItem

logger = logging.getLogger(__name__)

MAX_QUANTITY = 2 ** 31 - 1


def parse_quantity(value: Any, minimum: int = 1) -> int:
    if value is None or isinstance(value, bool):
        raise InvalidQuantity()
    try:
        number = Decimal(str(value).strip())
    except InvalidOperation:
        raise InvalidQuantity()
    if not number.is_finite() or number != number.to_integral_value() or number < minimum or number > MAX_QUANTITY:
        raise InvalidQuantity()
    return int(number)


def snapshot_line(db: Database, product_id: str, selected_variant_id: Optional[str] = None,
                  quantity: int = 1, now: Optional[datetime] = None) -> CartItem:
    """Build a cart line with the current price, image and stock of the product or SKU."""
    product = load_product(db, product_id)
    image = product.main_image
    details = ""

    if selected_variant_id:
        found = product.find_sku(selected_variant_id)
        if found is None:
            raise VariantNotFound()
        _, option, sku = found
        basis_price, stock = sku.price, sku.stock
        if option.image:
            image = option.image
        details = " / ".join(x for x in (option.name.en, sku.name.en) if x)
    elif product.variations:
        raise VariantRequired()
    else:
        basis_price, stock = product.base_price, product.stock

    promotion = find_active_promotion(db, product_id, now)
    return CartItem(
        product_id=product_id,
        selected_variant=selected_variant_id or None,
        name=product.name,
        image=image,
        price=compute_line_price(basis_price, promotion),
        quantity=quantity,
        stock=stock,
        variant_details_text=details,
    )


def _write_cart(db: Database, user_id: str, mutate: Callable[[Cart], None]) -> Cart:
    for _ in range(CART_WRITE_RETRIES):
        doc = db["cart"].find_one({"user_id": user_id})
        if doc is None:
            cart = Cart(user_id=user_id)
            mutate(cart)
            cart.version = 1
            now = utcnow()
            try:
                inserted = db["cart"].insert_one({**cart.to_mongo(), "created_at": now, "updated_at": now})
            except DuplicateKeyError:
                logger.info("Cart for user %s created concurrently, retrying", user_id)
                continue
            cart.id = str(inserted.inserted_id)
            return cart

        cart = Cart.from_mongo(doc)
        mutate(cart)
        res = db["cart"].update_one(
            {"_id": doc["_id"], "version": doc.get("version")},
            {
                "$set": {"items": [item.model_dump() for item in cart.items], "updated_at": utcnow()},
                "$inc": {"version": 1},
            },
        )
        if res.matched_count:
            cart.version += 1
            return cart
        logger.info("Cart write conflict for user %s, retrying", user_id)
    raise PersistenceError("Cart is being modified concurrently, please retry")


def remove_orphaned_items(db: Database, cart: Cart) -> Cart:
    """Drop lines whose product has been deleted and persist the result."""
    live = live_product_ids(db, (item.product_id for item in cart.items))
    if all(item.product_id in live for item in cart.items):
        return cart

    def drop(current: Cart) -> None:
        alive = live_product_ids(db, (item.product_id for item in current.items))
        current.items = [item for item in current.items if item.product_id in alive]

    healed = _write_cart(db, cart.user_id, drop)
    logger.info("Removed %s orphaned line(s) from cart of user %s", len(cart.items) - len(healed.items), cart.user_id)
    return healed


def get_cart(db: Database, user_id: str) -> Cart:
    cart = Cart.from_mongo(db["cart"].find_one({"user_id": user_id}))
    if cart is None:
        return Cart(user_id=user_id)
    return remove_orphaned_items(db, cart)


def add_item(db: Database, user_id: str, product_id: str, quantity: Any = 1,
             selected_variant_id: Optional[str] = None, now: Optional[datetime] = None) -> Cart:
    quantity = parse_quantity(quantity)
    line = snapshot_line(db, product_id, selected_variant_id, quantity, now)

    def merge(cart: Cart) -> None:
        index = cart.find_item(product_id, selected_variant_id)
        if index == -1:
            cart.items.append(line.model_copy())
            return
        total = cart.items[index].quantity + quantity
        if total > MAX_QUANTITY:
            raise InvalidQuantity()
        cart.items[index] = line.model_copy(update={"quantity": total})

    cart = _write_cart(db, user_id, merge)
    logger.info("Added %s x product %s (variant %s) to cart of user %s", quantity, product_id, selected_variant_id, user_id)
    return cart


def update_item(db: Database, user_id: str, product_id: str, quantity: Any,
                selected_variant_id: Optional[str] = None, now: Optional[datetime] = None) -> Cart:
    quantity = parse_quantity(quantity, minimum=0)
    current = Cart.from_mongo(db["cart"].find_one({"user_id": user_id}))
    if current is None or current.find_item(product_id, selected_variant_id) == -1:
        raise ItemNotFound()
    line = snapshot_line(db, product_id, selected_variant_id, quantity, now) if quantity else None

    def apply(cart: Cart) -> None:
        index = cart.find_item(product_id, selected_variant_id)
        if index == -1:
            raise ItemNotFound()
        if line is None:
            del cart.items[index]
        else:
            cart.items[index] = line.model_copy()

    cart = _write_cart(db, user_id, apply)
    logger.info("Set product %s (variant %s) to %s in cart of user %s", product_id, selected_variant_id, quantity, user_id)
    return cart


def clear(db: Database, user_id: str) -> None:
    db["cart"].update_one({"user_id": user_id}, {"$set": {"items": [], "updated_at": utcnow()}, "$inc": {"version": 1}})
