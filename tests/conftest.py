from typing import Generator

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from shopadmin import config, crud, schemas
from shopadmin.auth import create_access_token
from shopadmin.db import init_db, make_engine
from shopadmin.images import ImageStore, ImageUpload
from shopadmin.main import create_app

# smallest valid-looking payloads; content is never decoded
PNG_BYTES = b"\x89PNG\r\n\x1a\n" + b"\x00" * 16
JPEG_BYTES = b"\xff\xd8\xff\xe0" + b"\x00" * 16


def png(name: str = "photo.png") -> ImageUpload:
    return ImageUpload(filename=name, content_type="image/png", data=PNG_BYTES)


def png_file(name: str = "photo.png", field: str = "images"):
    """A multipart ``files`` entry for TestClient."""
    return (field, (name, PNG_BYTES, "image/png"))


def product_fields(**overrides) -> dict:
    fields = {
        "name": "Wireless Headphones",
        "description": "Over-ear, noise cancelling",
        "price": "99.99",
        "category": "Electronics",
        "stock": "50",
    }
    fields.update(overrides)
    return fields


def register_data(**overrides) -> schemas.UserRegister:
    data = {
        "name": "Jane",
        "email": "jane@example.com",
        "phone": "5551234",
        "zipcode": "10001",
        "password": "s3cret-pass",
    }
    data.update(overrides)
    return schemas.UserRegister(**data)


@pytest.fixture(autouse=True)
def settings(tmp_path):
    config.set_settings(
        jwt_secret="test-secret",
        jwt_expires_seconds=60 * 60 * 4,
        image_storage="inline",
        upload_dir=str(tmp_path / "uploads"),
        max_upload_files=10,
        max_upload_bytes=5 * 1024 * 1024,
        log_config="",
    )
    yield config.get_settings()
    config.reset_settings()


@pytest.fixture(scope="function")
def engine():
    # Use in-memory SQLite with a single connection
    engine = make_engine("sqlite://", poolclass=StaticPool)
    init_db(engine)
    yield engine
    engine.dispose()


@pytest.fixture(scope="function")
def db_session(engine) -> Generator:
    TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine, future=True)
    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()


@pytest.fixture
def store(settings) -> ImageStore:
    return ImageStore.from_settings(settings)


@pytest.fixture
def disk_store(settings) -> ImageStore:
    return ImageStore.from_settings(settings._replace(image_storage="disk"))


@pytest.fixture(scope="function")
def client(engine, settings):
    app = create_app(engine=engine, settings=settings)
    with TestClient(app) as c:
        yield c


@pytest.fixture(scope="function")
def disk_client(engine, settings):
    app = create_app(engine=engine, settings=settings._replace(image_storage="disk"))
    with TestClient(app) as c:
        yield c


@pytest.fixture
def admin_headers(db_session):
    admin, _ = crud.create_admin(db_session, register_data(name="Admin", email="admin@example.com"))
    return {"Authorization": f"Bearer {create_access_token(admin.id, admin.role)}"}


@pytest.fixture
def user_headers(db_session):
    user, token = crud.register(db_session, register_data(email="shopper@example.com"))
    return {"Authorization": f"Bearer {token}"}
