import pytest
from sqlalchemy.exc import IntegrityError

from newsletter.db.session import get_engine, get_session_factory
from newsletter.models.schemas import NewSubscriber
from newsletter.observability.spans import Span
from newsletter.services.subscriptions import PersistenceError, insert_subscriber


async def test_insert_subscriber_stores_one_row(stored_subscriptions) -> None:
    await insert_subscriber(get_session_factory(), NewSubscriber(name="le guin", email="ursula_le_guin@gmail.com"))

    rows = stored_subscriptions()
    assert [(row.name, row.email) for row in rows] == [("le guin", "ursula_le_guin@gmail.com")]
    assert rows[0].id is not None


async def test_insert_subscriber_failure_raises_typed_error_and_releases_connection() -> None:
    session_factory = get_session_factory()
    new_subscriber = NewSubscriber(name="le guin", email="ursula_le_guin@gmail.com")
    await insert_subscriber(session_factory, new_subscriber)

    with pytest.raises(PersistenceError) as excinfo:
        await insert_subscriber(session_factory, new_subscriber)

    assert isinstance(excinfo.value.__cause__, IntegrityError)
    assert get_engine().pool.checkedout() == 0


async def test_insert_subscriber_runs_in_a_child_span(log_records) -> None:
    with Span("outer", parent=None, request_id="svc-1") as outer:
        await insert_subscriber(get_session_factory(), NewSubscriber(name="n", email="n@example.com"))
    outer.close()

    end = next(r for r in log_records() if r["msg"] == "[SAVING NEW SUBSCRIBER DETAILS IN THE DATABASE - END]")
    assert end["spans"] == ["outer", "saving new subscriber details in the database"]
    assert end["request_id"] == "svc-1"
