import os

import pytest

os.environ.setdefault("SCHEDULER_ENABLED", "false")
os.environ.setdefault("EMAIL_ENABLED", "false")

from fastapi.testclient import TestClient

from tokens import STAFF_PERMISSIONS, make_token, bearer


class FakeConnection:
    """Stands in for app.db.ConnectionWrapper; records the transaction outcome."""

    def __init__(self):
        self.committed = False
        self.rolled_back = False
        self.closed = False

    def commit(self):
        self.committed = True

    def rollback(self):
        self.rolled_back = True

    def close(self):
        self.closed = True


@pytest.fixture
def client():
    from main import app

    return TestClient(app)


@pytest.fixture
def conn(monkeypatch):
    """Route every router's get_db_connection to one fake connection."""
    fake = FakeConnection()
    from app.routers.cms import bookings, sessions, classes, class_packs
    from app.routers.member import classes as member_classes

    for module in (bookings, sessions, classes, class_packs, member_classes):
        monkeypatch.setattr(module, "get_db_connection", lambda: fake)
    return fake


@pytest.fixture
def staff_headers():
    return bearer(make_token(permissions=STAFF_PERMISSIONS))


@pytest.fixture
def member_headers():
    return bearer(make_token(user_id=50, member_id=7, role_name="member"))
