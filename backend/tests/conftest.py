"""
Pytest fixtures for rentals backend tests.

Provides test database setup, users per role, bearer-token headers and an
in-memory blob store.
"""

import io

import pytest
from werkzeug.datastructures import FileStorage

from rentals import create_app
from rentals.errors import StorageError
from rentals.extensions import db
from rentals.models import Customer, Product, Reservation, User
from rentals.services import session_service
from rentals.services.approval_gate import Actor
from rentals.time_utils import parse_iso_datetime


class FakeBlobStore:
    """In-memory blob store. Filenames / urls listed in fail_* raise StorageError."""

    def __init__(self):
        self.blobs = {}
        self.deleted = []
        self.fail_uploads = set()
        self.fail_deletes = set()
        self._counter = 0

    def upload(self, file, folder):
        if file.filename in self.fail_uploads:
            raise StorageError(f"Failed to upload file: {file.filename}")
        self._counter += 1
        pathname = f"{folder}/{self._counter}-{file.filename}"
        content = file.read()
        url = f"https://blobs.test/{pathname}"
        self.blobs[url] = content
        return {"url": url, "pathname": pathname, "size": len(content)}

    def delete(self, url_or_pathname):
        if url_or_pathname in self.fail_deletes:
            raise StorageError(f"Failed to delete file: {url_or_pathname}")
        self.deleted.append(url_or_pathname)
        self.blobs.pop(url_or_pathname, None)

    def put(self, name, content=b"data"):
        """Seed a blob and return its attachment descriptor."""
        url = f"https://blobs.test/seed/{name}"
        self.blobs[url] = content
        return {"name": name, "url": url, "size": len(content), "type": "other"}


def make_file(name, content=b"file-content"):
    return FileStorage(stream=io.BytesIO(content), filename=name)


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'LOG_LEVEL': 'WARNING',
    })

    with app.app_context():
        db.create_all()
        yield app
        db.drop_all()


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def db_session(app):
    """Create fresh database for each test."""
    with app.app_context():
        # Clear all data but keep schema
        meta = db.metadata
        for table in reversed(meta.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()

        yield db.session

        # Cleanup after test
        db.session.rollback()


@pytest.fixture(scope='function')
def blob_store(app):
    store = FakeBlobStore()
    app.extensions["blob_store"] = store
    return store


def _make_user(db_session, name, role):
    user = User(name=name, email=f"{name}@rentals.test", role=role, is_active=True)
    db_session.add(user)
    db_session.commit()
    return user


@pytest.fixture(scope='function')
def admin_user(db_session):
    return _make_user(db_session, "admin", "admin")


@pytest.fixture(scope='function')
def manager_user(db_session):
    return _make_user(db_session, "manager", "manager")


@pytest.fixture(scope='function')
def employee_user(db_session):
    return _make_user(db_session, "employee", "employee")


@pytest.fixture
def admin(admin_user):
    return Actor.from_user(admin_user)


@pytest.fixture
def manager(manager_user):
    return Actor.from_user(manager_user)


@pytest.fixture
def employee(employee_user):
    return Actor.from_user(employee_user)


def auth_headers(user) -> dict:
    """Issue a session for `user` and return Authorization headers."""
    _, token = session_service.create_session(user.id)
    return {'Authorization': f'Bearer {token}'}


@pytest.fixture
def admin_headers(admin_user):
    return auth_headers(admin_user)


@pytest.fixture
def manager_headers(manager_user):
    return auth_headers(manager_user)


@pytest.fixture
def employee_headers(employee_user):
    return auth_headers(employee_user)


@pytest.fixture
def customer(db_session):
    record = Customer(
        first_name="Amina",
        last_name="Benali",
        email="amina@example.com",
        phone="0600000000",
        type="Client",
        attachments=[],
    )
    db_session.add(record)
    db_session.commit()
    return record


@pytest.fixture
def product(db_session):
    record = Product(name="Ivory Gown", category="Dresses", rental_cost=400, quantity=1, status="Published", attachments=[])
    db_session.add(record)
    db_session.commit()
    return record


@pytest.fixture
def reservation(db_session, customer, product):
    record = Reservation(
        type="Final",
        client_id=customer.id,
        status="Confirmed",
        item_ids=[product.id],
        pickup_date=parse_iso_datetime("2025-06-01T10:00:00Z"),
        return_date=parse_iso_datetime("2025-06-03T10:00:00Z"),
        total=1000,
    )
    db_session.add(record)
    db_session.commit()
    return record


@pytest.fixture
def upload():
    """Factory for werkzeug FileStorage uploads."""
    return make_file
