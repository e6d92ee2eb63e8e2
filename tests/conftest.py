from decimal import Decimal
from typing import List, Optional

import httpx
import pytest
from mongomock_motor import AsyncMongoMockClient

from shared.security_config import limiter
from shared.utils import create_access_token, get_password_hash
from storefront.main import app
from storefront.models import AddressDB, CategoryDB, ProductDB, UserDB, to_document

limiter.enabled = False


@pytest.fixture
def db():
    return AsyncMongoMockClient()["storefront_test"]


@pytest.fixture
def make_product(db):
    async def factory(name: str = "Widget", price: str = "10.00", stock: int = 5,
                      category: str = "gadgets", is_active: bool = True) -> str:
        product = ProductDB(name=name, price=Decimal(price), stock=stock,
                            category=category, is_active=is_active,
                            images=[f"https://cdn.example.com/{name.lower()}.jpg"])
        result = await db.products.insert_one(to_document(product))
        return str(result.inserted_id)
    return factory


@pytest.fixture
def make_category(db):
    async def factory(slug: str = "gadgets", name: str = "Gadgets") -> str:
        result = await db.categories.insert_one(to_document(CategoryDB(name=name, slug=slug)))
        return str(result.inserted_id)
    return factory


@pytest.fixture
def make_user(db):
    async def factory(email: str = "shopper@example.com", role: str = "user",
                      addresses: Optional[List[AddressDB]] = None) -> str:
        user = UserDB(email=email, password_hash=get_password_hash("Password123"),
                      full_name="Test Shopper", role=role, addresses=addresses or [])
        result = await db.users.insert_one(to_document(user))
        return str(result.inserted_id)
    return factory


@pytest.fixture
def home_address():
    return AddressDB(street="1 Main St", city="Springfield", country="US", is_default=True)


@pytest.fixture
def auth_headers():
    def headers(user_id: str, role: str = "user") -> dict:
        token = create_access_token({"sub": user_id, "role": role})
        return {"Authorization": f"Bearer {token}"}
    return headers


@pytest.fixture
async def client(db):
    app.mongodb = db
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as c:
        yield c
    app.dependency_overrides.clear()
