from datetime import datetime
from typing import List, Optional

import mongomock
import pytest
from fastapi.testclient import TestClient

import main
from database import create_document, ensure_indexes, get_db
from schemas import Advertisement, Bilingual, DiscountCode, Option, Product, Sku, User, Variation


@pytest.fixture
def db():
    database = mongomock.MongoClient().shop_test
    ensure_indexes(database)
    return database


@pytest.fixture
def client(db):
    main.app.dependency_overrides[get_db] = lambda: db
    yield TestClient(main.app)
    main.app.dependency_overrides.clear()


def insert_user(db, email="buyer@example.com", role="user") -> str:
    return create_document(db, "user", User(name=email.split("@")[0], email=email, role=role))


def auth_headers(user_id: str, **extra) -> dict:
    token = main.create_access_token({"sub": user_id})
    return {"Authorization": f"Bearer {token}", **extra}


def insert_product(db, base_price=100.0, stock=10, variations: Optional[List[Variation]] = None,
                   name="Desk Lamp", name_ar="مصباح مكتب", main_image="/uploads/products/lamp.jpg") -> str:
    product = Product(
        name=Bilingual(en=name, ar=name_ar),
        base_price=base_price,
        stock=stock,
        main_image=main_image,
        variations=variations or [],
    )
    return create_document(db, "product", product)


def color_variation(*skus: Sku, option_name="Red", option_image="/uploads/products/red.jpg") -> Variation:
    return Variation(
        name=Bilingual(en="Color", ar="اللون"),
        options=[Option(name=Bilingual(en=option_name, ar="أحمر"), image=option_image, skus=list(skus))],
    )


def insert_promotion(db, product_id: str, percentage: float, start: Optional[datetime] = None,
                     end: Optional[datetime] = None, is_active=True) -> str:
    ad = Advertisement(
        title=Bilingual(en="Sale", ar="تخفيض"),
        type="weeklyOffer",
        product_ref=product_id,
        is_active=is_active,
        discount_percentage=percentage,
        start_date=start,
        end_date=end,
    )
    return create_document(db, "advertisement", ad)


def insert_discount(db, code="SAVE", **fields) -> str:
    return create_document(db, "discount", DiscountCode(code=code, **fields))
