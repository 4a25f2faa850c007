import logging
from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

import jwt
from fastapi import Depends, FastAPI, Header, Query
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.security import OAuth2PasswordBearer
from passlib.context import CryptContext
from pydantic import BaseModel, EmailStr, Field
from pymongo import ASCENDING, DESCENDING
from pymongo.database import Database
from pymongo.errors import DuplicateKeyError, PyMongoError

import cart as cart_service
import orders as order_service
import wishlist as wishlist_service
from catalog import add_review, get_product, load_product
from config import (
    ACCESS_TOKEN_EXPIRE_MINUTES,
    ADMIN_EMAIL,
    ADMIN_PASSWORD,
    CLIENT_URL,
    JWT_ALG,
    JWT_SECRET,
    LOG_LEVEL,
    PORT,
)
from database import create_document, db, ensure_indexes, get_db, get_documents, oid, utcnow
from discounts import resolve_code
from errors import (
    AdvertisementNotFound,
    AuthorizationError,
    CategoryNotFound,
    CodeNotFound,
    ProductNotFound,
    ShopError,
    ValidationError,
)
from language import parse_language, select_language
from pricing import items_price, order_total
from schemas import (
    Advertisement as AdvertisementSchema,
    Category as CategorySchema,
    DiscountCode as DiscountSchema,
    Product as ProductSchema,
    ShippingAddress,
    User as UserSchema,
)

# ----------------------------------------------------------------------------
# App and Security Setup
# ----------------------------------------------------------------------------

logging.basicConfig(level=LOG_LEVEL, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
logger = logging.getLogger(__name__)

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/auth/login")


@asynccontextmanager
async def lifespan(app: FastAPI):
    try:
        ensure_indexes(db)
        seed_admin(db)
    except PyMongoError:
        logger.exception("Database not reachable on startup, indexes and admin seed skipped")
    yield


app = FastAPI(title="Bilingual Shop API", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[CLIENT_URL],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["Content-Type", "Authorization", "x-admin-request", "accept-language"],
)


@app.exception_handler(ShopError)
async def shop_error_handler(request, exc: ShopError):
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.message})


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request, exc: RequestValidationError):
    return JSONResponse(status_code=400, content={"detail": jsonable_encoder(exc.errors())})


@app.exception_handler(PyMongoError)
async def persistence_error_handler(request, exc: PyMongoError):
    logger.exception("Database error on %s %s", request.method, request.url.path)
    return JSONResponse(status_code=500, content={"detail": "Internal Server Error"})


# ----------------------------------------------------------------------------
# Utilities
# ----------------------------------------------------------------------------

class TokenResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(plain: str, hashed: str) -> bool:
    return pwd_context.verify(plain, hashed)


def create_access_token(subject: dict, expires_delta: Optional[timedelta] = None) -> str:
    to_encode = subject.copy()
    expire = datetime.now(timezone.utc) + (expires_delta or timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES))
    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, JWT_SECRET, algorithm=JWT_ALG)


def to_public(model: BaseModel) -> Dict[str, Any]:
    # hide sensitive fields
    return model.model_dump(mode="json", exclude={"password_hash"})


def get_language(
    accept_language: Optional[str] = Header(None),
    x_admin_request: Optional[str] = Header(None),
) -> Optional[str]:
    """None means the caller wants raw bilingual documents (admin console)."""
    if x_admin_request == "true":
        return None
    return parse_language(accept_language)


def localize(data: Any, lang: Optional[str]) -> Any:
    return data if lang is None else select_language(data, lang)


def get_current_user(token: str = Depends(oauth2_scheme), database: Database = Depends(get_db)) -> UserSchema:
    try:
        payload = jwt.decode(token, JWT_SECRET, algorithms=[JWT_ALG])
    except jwt.ExpiredSignatureError:
        raise AuthorizationError("Token expired")
    except jwt.PyJWTError:
        raise AuthorizationError("Invalid authentication")
    uid = oid(payload.get("sub"))
    user = UserSchema.from_mongo(database["user"].find_one({"_id": uid})) if uid else None
    if user is None or not user.is_active:
        raise AuthorizationError("User not found")
    return user


def get_current_admin(user: UserSchema = Depends(get_current_user)) -> UserSchema:
    if user.role != "admin":
        raise AuthorizationError("Admin access required")
    return user


# ----------------------------------------------------------------------------
# Models (request bodies)
# ----------------------------------------------------------------------------

class RegisterRequest(BaseModel):
    name: str
    email: EmailStr
    password: str


class LoginRequest(BaseModel):
    email: EmailStr
    password: str


class UpdateProfileRequest(BaseModel):
    name: Optional[str] = None


class ChangePasswordRequest(BaseModel):
    current_password: str
    new_password: str = Field(..., min_length=6)


class ReviewRequest(BaseModel):
    rating: int = Field(..., ge=1, le=5)
    comment: str = ""


class AddCartRequest(BaseModel):
    product_id: str
    quantity: Any = 1
    selected_variant_id: Optional[str] = None


class UpdateCartRequest(BaseModel):
    product_id: str
    quantity: Any
    selected_variant_id: Optional[str] = None


class PlaceOrderRequest(BaseModel):
    shipping_address: ShippingAddress
    payment_method: str
    discount_code: Optional[str] = None


class ValidateDiscountRequest(BaseModel):
    code: str


class PayOrderRequest(BaseModel):
    id: Optional[str] = None
    status: Optional[str] = None
    update_time: Optional[str] = None
    email_address: Optional[str] = None


# ----------------------------------------------------------------------------
# Auth Endpoints
# ----------------------------------------------------------------------------

@app.post("/api/auth/register", response_model=TokenResponse)
def register(body: RegisterRequest, database: Database = Depends(get_db)):
    if database["user"].find_one({"email": body.email}):
        raise ValidationError("Email already registered")
    user = UserSchema(name=body.name, email=body.email, password_hash=hash_password(body.password))
    try:
        uid = create_document(database, "user", user)
    except DuplicateKeyError:
        raise ValidationError("Email already registered")
    logger.info("Registered user %s", uid)
    return TokenResponse(access_token=create_access_token({"sub": uid, "role": user.role}))


@app.post("/api/auth/login", response_model=TokenResponse)
def login(body: LoginRequest, database: Database = Depends(get_db)):
    user = UserSchema.from_mongo(database["user"].find_one({"email": body.email}))
    if not user or not user.password_hash or not verify_password(body.password, user.password_hash):
        raise AuthorizationError("Invalid credentials")
    return TokenResponse(access_token=create_access_token({"sub": user.id, "role": user.role}))


@app.get("/api/auth/me")
def me(current: UserSchema = Depends(get_current_user)):
    return to_public(current)


@app.put("/api/auth/profile")
def update_profile(body: UpdateProfileRequest, database: Database = Depends(get_db),
                   current: UserSchema = Depends(get_current_user)):
    if body.name:
        database["user"].update_one({"_id": oid(current.id)}, {"$set": {"name": body.name, "updated_at": utcnow()}})
        current = current.model_copy(update={"name": body.name})
    return to_public(current)


@app.put("/api/auth/profile/password")
def change_password(body: ChangePasswordRequest, database: Database = Depends(get_db),
                    current: UserSchema = Depends(get_current_user)):
    if not current.password_hash or not verify_password(body.current_password, current.password_hash):
        raise AuthorizationError("Invalid current password")
    database["user"].update_one(
        {"_id": oid(current.id)},
        {"$set": {"password_hash": hash_password(body.new_password), "updated_at": utcnow()}},
    )
    logger.info("User %s changed their password", current.id)
    return {"message": "Password updated successfully"}


# ----------------------------------------------------------------------------
# Categories
# ----------------------------------------------------------------------------

@app.get("/api/categories")
def list_categories(database: Database = Depends(get_db), lang: Optional[str] = Depends(get_language)):
    docs = get_documents(database, "category")
    return localize([to_public(CategorySchema.from_mongo(doc)) for doc in docs], lang)


@app.get("/api/categories/{category_id}")
def get_category(category_id: str, database: Database = Depends(get_db), lang: Optional[str] = Depends(get_language)):
    _id = oid(category_id)
    category = CategorySchema.from_mongo(database["category"].find_one({"_id": _id})) if _id else None
    if category is None:
        raise CategoryNotFound()
    return localize(to_public(category), lang)


@app.post("/api/categories", status_code=201)
def create_category(body: CategorySchema, database: Database = Depends(get_db), user=Depends(get_current_admin)):
    cid = create_document(database, "category", body)
    return {"id": cid}


@app.put("/api/categories/{category_id}")
def update_category(category_id: str, body: CategorySchema, database: Database = Depends(get_db),
                    user=Depends(get_current_admin)):
    _id = oid(category_id)
    res = database["category"].update_one({"_id": _id}, {"$set": {**body.to_mongo(), "updated_at": utcnow()}}) if _id else None
    if res is None or res.matched_count == 0:
        raise CategoryNotFound()
    return {"updated": True}


@app.delete("/api/categories/{category_id}")
def delete_category(category_id: str, database: Database = Depends(get_db), user=Depends(get_current_admin)):
    _id = oid(category_id)
    res = database["category"].delete_one({"_id": _id}) if _id else None
    if res is None or res.deleted_count == 0:
        raise CategoryNotFound()
    return {"deleted": True}


# ----------------------------------------------------------------------------
# Products
# ----------------------------------------------------------------------------

@app.get("/api/products")
def list_products(
    category: Optional[str] = Query(None),
    page: int = 1,
    limit: int = 12,
    database: Database = Depends(get_db),
    lang: Optional[str] = Depends(get_language),
):
    query: Dict[str, Any] = {}
    if category:
        query["category"] = category
    total = database["product"].count_documents(query)
    skip = max(0, (page - 1) * limit)
    cursor = database["product"].find(query, sort=[("created_at", DESCENDING)]).skip(skip).limit(limit)
    items = [to_public(ProductSchema.from_mongo(doc)) for doc in cursor]
    return {"items": localize(items, lang), "total": total, "page": page, "limit": limit}


@app.get("/api/products/{product_id}")
def get_product_detail(product_id: str, database: Database = Depends(get_db),
                       lang: Optional[str] = Depends(get_language)):
    return localize(to_public(load_product(database, product_id)), lang)


@app.post("/api/products", status_code=201)
def create_product(body: ProductSchema, database: Database = Depends(get_db), user=Depends(get_current_admin)):
    if body.category and not database["category"].find_one({"_id": oid(body.category)}):
        raise CategoryNotFound()
    fresh = body.model_copy(update={"reviews": [], "num_reviews": 0, "average_rating": 0})
    pid = create_document(database, "product", fresh)
    logger.info("Created product %s", pid)
    return {"id": pid}


@app.put("/api/products/{product_id}")
def update_product(product_id: str, body: ProductSchema, database: Database = Depends(get_db),
                   user=Depends(get_current_admin)):
    _id = oid(product_id)
    # reviews and their aggregates only change through add_review
    fields = body.to_mongo()
    for key in ("reviews", "num_reviews", "average_rating"):
        fields.pop(key)
    res = database["product"].update_one({"_id": _id}, {"$set": {**fields, "updated_at": utcnow()}}) if _id else None
    if res is None or res.matched_count == 0:
        raise ProductNotFound()
    return {"updated": True}


@app.delete("/api/products/{product_id}")
def delete_product(product_id: str, database: Database = Depends(get_db), user=Depends(get_current_admin)):
    _id = oid(product_id)
    res = database["product"].delete_one({"_id": _id}) if _id else None
    if res is None or res.deleted_count == 0:
        raise ProductNotFound()
    logger.info("Deleted product %s", product_id)
    return {"deleted": True}


@app.post("/api/products/{product_id}/reviews", status_code=201)
def create_review(product_id: str, body: ReviewRequest, database: Database = Depends(get_db),
                  current: UserSchema = Depends(get_current_user)):
    add_review(database, product_id, current.id, current.name, body.rating, body.comment)
    return {"message": "Review added"}


# ----------------------------------------------------------------------------
# Advertisements (promotions)
# ----------------------------------------------------------------------------

def _check_product_ref(database: Database, ad: AdvertisementSchema) -> None:
    if ad.product_ref and get_product(database, ad.product_ref) is None:
        raise ValidationError("Invalid product_ref: Product not found.")


def _advertisement_with_product(database: Database, ad: AdvertisementSchema) -> Dict[str, Any]:
    data = to_public(ad)
    product = get_product(database, ad.product_ref) if ad.product_ref else None
    if product is not None:
        data["product"] = {
            "id": product.id,
            "name": product.name.model_dump(),
            "base_price": product.base_price,
            "main_image": product.main_image,
            "category": product.category,
        }
    return data


@app.get("/api/advertisements")
def list_advertisements(
    type: Optional[str] = Query(None),
    is_active: Optional[bool] = Query(None),
    database: Database = Depends(get_db),
    lang: Optional[str] = Depends(get_language),
):
    query: Dict[str, Any] = {}
    if type:
        query["type"] = type
    if is_active is not None:
        query["is_active"] = is_active
    cursor = database["advertisement"].find(query, sort=[("order", ASCENDING), ("created_at", DESCENDING)])
    ads = [_advertisement_with_product(database, AdvertisementSchema.from_mongo(doc)) for doc in cursor]
    return localize(ads, lang)


@app.get("/api/advertisements/{ad_id}/raw")
def get_advertisement_raw(ad_id: str, database: Database = Depends(get_db), user=Depends(get_current_admin)):
    _id = oid(ad_id)
    ad = AdvertisementSchema.from_mongo(database["advertisement"].find_one({"_id": _id})) if _id else None
    if ad is None:
        raise AdvertisementNotFound()
    return _advertisement_with_product(database, ad)


@app.post("/api/advertisements", status_code=201)
def create_advertisement(body: AdvertisementSchema, database: Database = Depends(get_db),
                         user=Depends(get_current_admin)):
    _check_product_ref(database, body)
    ad_id = create_document(database, "advertisement", body)
    logger.info("Created advertisement %s for product %s (%s%%)", ad_id, body.product_ref, body.discount_percentage)
    return {"id": ad_id}


@app.put("/api/advertisements/{ad_id}")
def update_advertisement(ad_id: str, body: AdvertisementSchema, database: Database = Depends(get_db),
                         user=Depends(get_current_admin)):
    _check_product_ref(database, body)
    _id = oid(ad_id)
    res = database["advertisement"].update_one({"_id": _id}, {"$set": {**body.to_mongo(), "updated_at": utcnow()}}) if _id else None
    if res is None or res.matched_count == 0:
        raise AdvertisementNotFound()
    return {"updated": True}


@app.delete("/api/advertisements/{ad_id}")
def delete_advertisement(ad_id: str, database: Database = Depends(get_db), user=Depends(get_current_admin)):
    _id = oid(ad_id)
    res = database["advertisement"].delete_one({"_id": _id}) if _id else None
    if res is None or res.deleted_count == 0:
        raise AdvertisementNotFound()
    return {"message": "Advertisement deleted successfully"}


# ----------------------------------------------------------------------------
# Discount codes
# ----------------------------------------------------------------------------

@app.get("/api/discounts")
def list_discounts(database: Database = Depends(get_db), user=Depends(get_current_admin)):
    return [to_public(DiscountSchema.from_mongo(doc)) for doc in get_documents(database, "discount")]


@app.post("/api/discounts", status_code=201)
def create_discount(body: DiscountSchema, database: Database = Depends(get_db), user=Depends(get_current_admin)):
    try:
        did = create_document(database, "discount", body.model_copy(update={"usage_count": 0}))
    except DuplicateKeyError:
        raise ValidationError("Discount code already exists")
    logger.info("Created discount code %s", body.code)
    return {"id": did}


@app.put("/api/discounts/{discount_id}")
def update_discount(discount_id: str, body: DiscountSchema, database: Database = Depends(get_db),
                    user=Depends(get_current_admin)):
    _id = oid(discount_id)
    # usage_count only moves through redemption
    fields = body.to_mongo()
    fields.pop("usage_count")
    try:
        res = database["discount"].update_one({"_id": _id}, {"$set": {**fields, "updated_at": utcnow()}}) if _id else None
    except DuplicateKeyError:
        raise ValidationError("Discount code already exists")
    if res is None or res.matched_count == 0:
        raise CodeNotFound()
    return {"updated": True}


@app.delete("/api/discounts/{discount_id}")
def delete_discount(discount_id: str, database: Database = Depends(get_db), user=Depends(get_current_admin)):
    _id = oid(discount_id)
    res = database["discount"].delete_one({"_id": _id}) if _id else None
    if res is None or res.deleted_count == 0:
        raise CodeNotFound()
    return {"deleted": True}


@app.post("/api/discounts/validate")
def validate_discount(body: ValidateDiscountRequest, database: Database = Depends(get_db),
                      current: UserSchema = Depends(get_current_user)):
    subtotal = items_price(cart_service.get_cart(database, current.id).items)
    resolved = resolve_code(database, body.code, subtotal)
    return {
        "code": resolved.code,
        "amount": resolved.amount,
        "items_price": subtotal,
        "total_price": order_total(subtotal, resolved.amount),
    }


# ----------------------------------------------------------------------------
# Cart
# ----------------------------------------------------------------------------

def _cart_response(items: List[Any], lang: Optional[str]) -> Dict[str, Any]:
    return {"cart": localize([item.model_dump(mode="json") for item in items], lang)}


@app.get("/api/cart")
def get_cart(database: Database = Depends(get_db), current: UserSchema = Depends(get_current_user),
             lang: Optional[str] = Depends(get_language)):
    return _cart_response(cart_service.get_cart(database, current.id).items, lang)


@app.post("/api/cart", status_code=201)
def add_to_cart(body: AddCartRequest, database: Database = Depends(get_db),
                current: UserSchema = Depends(get_current_user), lang: Optional[str] = Depends(get_language)):
    updated = cart_service.add_item(database, current.id, body.product_id, body.quantity, body.selected_variant_id)
    return _cart_response(updated.items, lang)


@app.put("/api/cart")
def update_cart(body: UpdateCartRequest, database: Database = Depends(get_db),
                current: UserSchema = Depends(get_current_user), lang: Optional[str] = Depends(get_language)):
    updated = cart_service.update_item(database, current.id, body.product_id, body.quantity, body.selected_variant_id)
    return _cart_response(updated.items, lang)


@app.delete("/api/cart/clear")
def clear_cart(database: Database = Depends(get_db), current: UserSchema = Depends(get_current_user)):
    cart_service.clear(database, current.id)
    return {"message": "Cart cleared successfully."}


# ----------------------------------------------------------------------------
# Wishlist
# ----------------------------------------------------------------------------

@app.get("/api/wishlist")
def get_wishlist(database: Database = Depends(get_db), current: UserSchema = Depends(get_current_user),
                 lang: Optional[str] = Depends(get_language)):
    return localize(wishlist_service.get_wishlist(database, current.id), lang)


@app.post("/api/wishlist/{product_id}")
def add_to_wishlist(product_id: str, database: Database = Depends(get_db),
                    current: UserSchema = Depends(get_current_user), lang: Optional[str] = Depends(get_language)):
    saved = wishlist_service.add(database, current.id, product_id)
    return {"message": "Product added to wishlist successfully.", "wishlist": localize(saved, lang)}


@app.delete("/api/wishlist/{product_id}")
def remove_from_wishlist(product_id: str, database: Database = Depends(get_db),
                         current: UserSchema = Depends(get_current_user), lang: Optional[str] = Depends(get_language)):
    saved = wishlist_service.remove(database, current.id, product_id)
    return {"message": "Product removed from wishlist successfully.", "wishlist": localize(saved, lang)}


# ----------------------------------------------------------------------------
# Orders (Checkout & Tracking)
# ----------------------------------------------------------------------------

@app.post("/api/orders", status_code=201)
def place_order(body: PlaceOrderRequest, database: Database = Depends(get_db),
                current: UserSchema = Depends(get_current_user), lang: Optional[str] = Depends(get_language)):
    order = order_service.place_order(
        database, current.id, body.shipping_address, body.payment_method, body.discount_code or None
    )
    return localize(to_public(order), lang)


@app.get("/api/orders/myorders")
def my_orders(database: Database = Depends(get_db), current: UserSchema = Depends(get_current_user),
              lang: Optional[str] = Depends(get_language)):
    return localize([to_public(o) for o in order_service.list_user_orders(database, current.id)], lang)


@app.get("/api/orders")
def admin_orders(database: Database = Depends(get_db), user=Depends(get_current_admin),
                 lang: Optional[str] = Depends(get_language)):
    return localize([to_public(o) for o in order_service.list_orders(database)], lang)


@app.get("/api/orders/{order_id}")
def get_order(order_id: str, database: Database = Depends(get_db), current: UserSchema = Depends(get_current_user),
              lang: Optional[str] = Depends(get_language)):
    order = order_service.get_order_for(database, order_id, current.id, current.role)
    data = to_public(order)
    for item, details in zip(data["order_items"], order_service.variant_details(database, order)):
        item["variant_details"] = details
    return localize(data, lang)


@app.put("/api/orders/{order_id}/pay")
def pay_order(order_id: str, body: PayOrderRequest, database: Database = Depends(get_db),
              user=Depends(get_current_admin)):
    return to_public(order_service.mark_paid(database, order_id, body.model_dump()))


@app.put("/api/orders/{order_id}/deliver")
def deliver_order(order_id: str, database: Database = Depends(get_db), user=Depends(get_current_admin)):
    return to_public(order_service.mark_delivered(database, order_id))


# ----------------------------------------------------------------------------
# Admin dashboard
# ----------------------------------------------------------------------------

@app.get("/api/dashboard/summary-stats")
def summary_stats(database: Database = Depends(get_db), user=Depends(get_current_admin)):
    totals = list(database["order"].aggregate([
        {"$group": {"_id": None, "total_revenue": {"$sum": "$total_price"}, "total_orders": {"$sum": 1}}}
    ]))
    revenue = totals[0]["total_revenue"] if totals else 0
    count = totals[0]["total_orders"] if totals else 0
    return {
        "total_revenue": revenue,
        "total_orders": count,
        "total_products": database["product"].count_documents({}),
        "total_users": database["user"].count_documents({}),
        "average_order_value": revenue / count if count else 0,
    }


# ----------------------------------------------------------------------------
# Health and Test
# ----------------------------------------------------------------------------

@app.get("/")
def root():
    return {"message": "Bilingual Shop API running"}


@app.get("/test")
def test_database(database: Database = Depends(get_db)):
    try:
        collections = database.list_collection_names()
        return {"backend": "ok", "db": "ok", "collections": collections}
    except PyMongoError as e:
        return {"backend": "ok", "db": f"error: {e}"}


# ----------------------------------------------------------------------------
# Seed Data (idempotent)
# ----------------------------------------------------------------------------

def seed_admin(database: Database) -> None:
    if not ADMIN_PASSWORD or database["user"].find_one({"email": ADMIN_EMAIL}):
        return
    admin = UserSchema(name="Admin", email=ADMIN_EMAIL, password_hash=hash_password(ADMIN_PASSWORD), role="admin")
    create_document(database, "user", admin)
    logger.info("Created admin account %s", ADMIN_EMAIL)


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=PORT)
