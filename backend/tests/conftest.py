import os
import tempfile
from pathlib import Path

# Configure the app before any backend module is imported
_TEST_DIR = Path(tempfile.mkdtemp(prefix="cozy-cafe-tests-"))
os.environ["DATABASE_URL"] = f"sqlite:///{_TEST_DIR / 'cafe.db'}"
os.environ["SECRET_KEY"] = "test-secret-key"
os.environ["REDIS_ENABLED"] = "0"

import pytest
from fastapi.testclient import TestClient

import auth
import models
from database import SessionLocal, engine, init_cafe_data
from main import app


@pytest.fixture
def db():
    models.Base.metadata.drop_all(bind=engine)
    models.Base.metadata.create_all(bind=engine)
    session = SessionLocal()
    init_cafe_data(session)
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def client(db):
    return TestClient(app)


@pytest.fixture
def make_menu(db):
    def _make(name="콜드브루", stock=10, price=4500, options=()):
        menu = models.Menu(name=name, price=price, category="Coffee", stock=stock)
        menu.options = [models.Option(name=n, price=p) for n, p in options]
        db.add(menu)
        db.commit()
        db.refresh(menu)
        return menu
    return _make


@pytest.fixture
def make_user(db):
    def _make(username, role_id=3, password="pass1234"):
        user = models.User(username=username, password=auth.get_password_hash(password), role_id=role_id)
        db.add(user)
        db.commit()
        db.refresh(user)
        return user
    return _make


def bearer(username, role="Staff"):
    token = auth.create_access_token({"sub": username, "role": role})
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def admin_headers(db):
    return bearer("admin", "Admin")


@pytest.fixture
def manager_headers(make_user):
    make_user("manager", role_id=2)
    return bearer("manager", "Manager")


@pytest.fixture
def staff_headers(make_user):
    make_user("barista", role_id=3)
    return bearer("barista", "Staff")


def stock_of(db, menu_id):
    db.expire_all()
    return db.query(models.Menu).filter(models.Menu.id == menu_id).one().stock
