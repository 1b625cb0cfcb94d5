"""
Pytest configuration and fixtures.

MongoDB is replaced by mongomock and Redis by fakeredis; object storage and
the job queue are recorded instead of called.
"""
import io
import os

os.environ.setdefault("DATABASE_URL", "mongodb://localhost:27017")
os.environ.setdefault("DATABASE_NAME", "storefront_test")
os.environ.setdefault("REDIS_URL", "redis://localhost:6379/15")
os.environ.setdefault("JWT_SECRET", "test-secret")
os.environ.setdefault("S3_ENDPOINT", "http://localhost:9000")
os.environ.setdefault("S3_BUCKET", "storefront")
os.environ.setdefault("S3_ACCESS_KEY_ID", "test-key")
os.environ.setdefault("S3_SECRET_KEY", "test-secret-key")
os.environ.setdefault("ADMIN_PHONE", "+2348012345678")
os.environ.setdefault("LOG_LEVEL", "WARNING")

import fakeredis  # noqa: E402
import mongomock  # noqa: E402
import pytest  # noqa: E402

# Must be active before database.py creates its client
_mongo_patch = mongomock.patch(servers=(("localhost", 27017),), on_new="create")
_mongo_patch.start()

from bson import ObjectId  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402
from PIL import Image  # noqa: E402

import auth  # noqa: E402
import cache  # noqa: E402
import categories  # noqa: E402
import jobs  # noqa: E402
import orders  # noqa: E402
import products  # noqa: E402
import promotions  # noqa: E402
from database import create_document, db  # noqa: E402
from main import app  # noqa: E402
from schemas import Category as CategorySchema, Product as ProductSchema, User as UserSchema  # noqa: E402
from security import create_access_token, hash_password  # noqa: E402

PASSWORD = "Secret123!"
STORAGE_PREFIX = "http://localhost:9000/storefront/uploads/"


def pytest_unconfigure(config):
    _mongo_patch.stop()


def png_bytes(size=(8, 8), color=(200, 30, 30)) -> bytes:
    out = io.BytesIO()
    Image.new("RGB", size, color).save(out, format="PNG")
    return out.getvalue()


class StorageRecorder:
    """Stands in for the S3 upload/delete helpers at their import sites."""

    def __init__(self):
        self.uploaded = []
        self.deleted = []

    def upload(self, data, filename, content_type=None):
        url = f"{STORAGE_PREFIX}{len(self.uploaded)}-{filename}"
        self.uploaded.append(url)
        return url

    def upload_file(self, upload):
        return self.upload(upload.file.read(), upload.filename, upload.content_type)

    def delete(self, url):
        if not url:
            return False
        self.deleted.append(url)
        return True


@pytest.fixture(autouse=True)
def clean_db():
    yield
    for name in db.list_collection_names():
        db.drop_collection(name)


@pytest.fixture(autouse=True)
def fake_redis(monkeypatch):
    fake = fakeredis.FakeRedis(decode_responses=True)
    monkeypatch.setattr(cache, "redis_client", fake)
    return fake


@pytest.fixture(autouse=True)
def storage(monkeypatch):
    recorder = StorageRecorder()
    for module in (categories, products):
        monkeypatch.setattr(module, "upload_image_file", recorder.upload_file)
    for module in (categories, products, orders, promotions):
        monkeypatch.setattr(module, "delete_file", recorder.delete)
    monkeypatch.setattr(promotions, "upload_image", recorder.upload)
    monkeypatch.setattr(jobs, "upload_image", recorder.upload)
    monkeypatch.setattr(jobs, "upload_pdf", recorder.upload)
    return recorder


@pytest.fixture(autouse=True)
def queued(monkeypatch):
    recorded = {"emails": [], "receipts": []}
    monkeypatch.setattr(auth, "enqueue_email", lambda *args: recorded["emails"].append(args))
    monkeypatch.setattr(orders, "enqueue_receipt", lambda *args: recorded["receipts"].append(args))
    return recorded


@pytest.fixture
def client():
    return TestClient(app)


@pytest.fixture
def make_user():
    def _make_user(role="user", email="ada@example.com", phone="08012345678", password=PASSWORD,
                   firstname="Ada", lastname="Obi"):
        document = UserSchema(
            firstname=firstname,
            lastname=lastname,
            email=email,
            password=hash_password(password),
            phone=phone,
            role=role,
        ).to_document()
        user_id = create_document("user", document)
        user = db["user"].find_one({"_id": ObjectId(user_id)})
        return user, {"Authorization": f"Bearer {create_access_token(user)}"}
    return _make_user


@pytest.fixture
def user(make_user):
    return make_user()


@pytest.fixture
def admin(make_user):
    return make_user(role="admin", email="admin@example.com", phone="08098765432", firstname="Tobi",
                     lastname="Admin")


@pytest.fixture
def make_category():
    def _make_category(name="phones", author=None):
        document = CategorySchema(name=name, image=f"{STORAGE_PREFIX}{name}.jpg",
                                  author=str(author or ObjectId())).to_document()
        document["author"] = ObjectId(document["author"])
        return db["category"].find_one({"_id": ObjectId(create_document("category", document))})
    return _make_category


@pytest.fixture
def make_product(make_category):
    def _make_product(name="iphone 15", price=1000.0, quantity=10, category=None, **extra):
        slug = name.replace(" ", "-")
        category = category or db["category"].find_one({"name": "phones"}) or make_category()
        document = ProductSchema(
            name=name,
            description=f"{name} description",
            price=price,
            quantity=quantity,
            category=str(category["_id"]),
            thumbnail=f"{STORAGE_PREFIX}{slug}-cover.jpg",
            images=[f"{STORAGE_PREFIX}{slug}-1.jpg"],
        ).to_document()
        document["category"] = category["_id"]
        document.update(extra)
        return db["product"].find_one({"_id": ObjectId(create_document("product", document))})
    return _make_product
