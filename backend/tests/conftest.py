import itertools
from types import SimpleNamespace

import pytest
from fastapi.testclient import TestClient

from refurbmart import crud, models, schemas, security
from refurbmart.config import Settings
from refurbmart.main import create_app
from refurbmart.models import Role

PASSWORD = "secret123"

_emails = itertools.count(1)


@pytest.fixture
def settings(tmp_path):
    # A fresh SQLite file per test keeps every test on a clean database
    return Settings(
        database_url=f"sqlite:///{tmp_path / 'refurbmart-test.db'}",
        jwt_secret="test-secret",
        bcrypt_rounds=10,
        environment="test",
    )


@pytest.fixture
def app(settings):
    return create_app(settings)


@pytest.fixture
def client(app):
    with TestClient(app) as c:
        yield c


@pytest.fixture
def session_factory(app, client):
    return app.state.database.SessionLocal


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def make_user(session_factory, settings):
    def _make(role=Role.BUYER, name="Test User", password=PASSWORD):
        email = f"{role.value}{next(_emails)}@example.com"
        session = session_factory()
        try:
            user = crud.create_user(
                session,
                name=name,
                email=email,
                password_hash=security.hash_password(password, settings.bcrypt_rounds),
                role=role,
            )
            token = security.create_access_token(user.id, user.role, settings)
            return SimpleNamespace(
                id=user.id,
                email=email,
                password=password,
                token=token,
                headers={"Authorization": f"Bearer {token}"},
            )
        finally:
            session.close()

    return _make


@pytest.fixture
def buyer(make_user):
    return make_user(Role.BUYER, name="Bea Buyer")


@pytest.fixture
def seller(make_user):
    return make_user(Role.SELLER, name="Sam Seller")


@pytest.fixture
def admin(make_user):
    return make_user(Role.ADMIN, name="Ada Admin")


@pytest.fixture
def make_product(session_factory):
    def _make(owner, price=100.0, stock=5, approved=True, **overrides):
        data = {
            "name": "Refurbished Phone",
            "description": "Lightly used, fully tested",
            "price": price,
            "category": "phones",
            "brand": "Acme",
            "condition": models.ProductCondition.EXCELLENT,
            "stock_quantity": stock,
            "images": ["https://img.example.com/phone.jpg"],
            "specifications": {"storage": "128GB"},
            "tags": ["phone"],
        }
        data.update(overrides)
        session = session_factory()
        try:
            product = crud.create_product(
                session, schemas.ProductCreate(**data), seller_id=owner.id, approved=approved
            )
            return product.id
        finally:
            session.close()

    return _make


@pytest.fixture
def stock_of(session_factory):
    def _stock(product_id):
        session = session_factory()
        try:
            return crud.get_product(session, product_id).stock_quantity
        finally:
            session.close()

    return _stock


@pytest.fixture
def address():
    return {
        "street": "1 Main St",
        "city": "Springfield",
        "state": "IL",
        "postalCode": "62701",
        "country": "US",
    }
