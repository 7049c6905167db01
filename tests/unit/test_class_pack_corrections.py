import pytest

from app.errors import ConflictError, InvalidRequestError
from app.services import class_packs


class RecordingCursor:
    def __init__(self):
        self.queries = []

    def execute(self, query, params=None):
        self.queries.append((" ".join(query.split()), params))

    def close(self):
        pass

    def category_updates(self):
        return [(q, p) for q, p in self.queries if q.startswith("UPDATE member_category_balances")]


class CursorConnection:
    def __init__(self):
        self.cursor_ = RecordingCursor()

    def cursor(self, dictionary=False):
        return self.cursor_


@pytest.fixture
def ledger(monkeypatch):
    state = {
        "balance": {
            "id": 300,
            "class_pack_id": 40,
            "status": "active",
            "classes_purchased": 4,
            "classes_used": 1,
            "classes_remaining": 3,
            "expires_at": None,
        },
        "pack": {"id": 40, "allocation_mode": "per_category"},
        "category": {"id": 900, "category_id": 1, "credits_allocated": 2, "credits_remaining": 2},
        "saved": [],
    }
    monkeypatch.setattr(class_packs, "get_balance_row", lambda *args, **kwargs: state["balance"])
    monkeypatch.setattr(class_packs, "get_class_pack_row", lambda *args: state["pack"])
    monkeypatch.setattr(class_packs, "get_category_balance_row", lambda *args, **kwargs: state["category"])
    monkeypatch.setattr(class_packs, "save_balance", lambda cursor, balance: state["saved"].append(dict(balance)))
    monkeypatch.setattr(class_packs, "_with_category_balances", lambda cursor, balance: balance)
    return state


def test_per_category_use_needs_category(ledger):
    conn = CursorConnection()
    with pytest.raises(InvalidRequestError) as exc:
        class_packs.use_credit(conn, 1, 300)
    assert exc.value.error_code == "CATEGORY_REQUIRED"
    assert ledger["saved"] == []


def test_per_category_use_moves_both_ledgers(ledger):
    conn = CursorConnection()

    balance = class_packs.use_credit(conn, 1, 300, category_id=1)

    assert balance["classes_remaining"] == 2
    updates = conn.cursor_.category_updates()
    assert len(updates) == 1
    assert "credits_remaining - 1" in updates[0][0]
    assert updates[0][1] == (900,)


def test_per_category_use_without_category_credits(ledger):
    ledger["category"]["credits_remaining"] = 0
    conn = CursorConnection()
    with pytest.raises(ConflictError):
        class_packs.use_credit(conn, 1, 300, category_id=1)
    assert ledger["saved"] == []


def test_per_category_refund_moves_both_ledgers(ledger):
    ledger["category"]["credits_remaining"] = 1
    conn = CursorConnection()

    balance = class_packs.refund_credit(conn, 1, 300, category_id=1)

    assert balance["classes_remaining"] == 4
    updates = conn.cursor_.category_updates()
    assert len(updates) == 1
    assert "credits_remaining + 1" in updates[0][0]


def test_per_category_refund_of_full_category(ledger):
    conn = CursorConnection()
    with pytest.raises(ConflictError) as exc:
        class_packs.refund_credit(conn, 1, 300, category_id=1)
    assert exc.value.error_code == "NOTHING_TO_REFUND"


def test_flat_pack_ignores_category_ledger(ledger):
    ledger["pack"]["allocation_mode"] = "flat"
    conn = CursorConnection()

    balance = class_packs.use_credit(conn, 1, 300)

    assert balance["classes_remaining"] == 2
    assert conn.cursor_.category_updates() == []


def test_flat_pack_rejects_category(ledger):
    ledger["pack"]["allocation_mode"] = "flat"
    with pytest.raises(InvalidRequestError) as exc:
        class_packs.use_credit(CursorConnection(), 1, 300, category_id=1)
    assert exc.value.error_code == "CATEGORY_NOT_APPLICABLE"
