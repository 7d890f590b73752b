import pytest
from event_detector.core.change_event import parse_change_event
from event_detector.helpers import changed_columns, changed_to, column_has_changed


@pytest.fixture
def status_update(make_payload):
    return parse_change_event(
        make_payload(
            "UPDATE",
            "orders",
            old={"id": 42, "status": "pending", "total": 10, "note": "gift"},
            new={"id": 42, "status": "cancelled", "total": 10, "refund": True},
        )
    )


def test_column_has_changed(status_update):
    assert column_has_changed("status", status_update)
    assert not column_has_changed("total", status_update)
    assert not column_has_changed("does_not_exist", status_update)


def test_column_present_on_one_side_counts_as_changed(status_update):
    assert column_has_changed("refund", status_update)
    assert column_has_changed("note", status_update)


def test_changed_columns(status_update):
    assert changed_columns(status_update) == ["status", "refund", "note"]


def test_changed_to(status_update):
    assert changed_to("status", "cancelled", status_update)
    assert not changed_to("status", "pending", status_update)
    assert not changed_to("total", 10, status_update)


def test_insert_and_delete_never_change(user_insert_event, make_payload):
    deleted = parse_change_event(make_payload("DELETE", "orders", old={"id": 42, "status": "pending"}))

    for event in (user_insert_event, deleted):
        assert not column_has_changed("id", event)
        assert changed_columns(event) == []
        assert not changed_to("email", "new.user@example.com", event)
