from __future__ import annotations

import uuid
from datetime import datetime, timezone

import structlog
from sqlalchemy import insert
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker
from starlette.concurrency import run_in_threadpool

from newsletter.db.models import Subscription
from newsletter.models.schemas import NewSubscriber
from newsletter.observability.spans import instrument


logger = structlog.get_logger(__name__)


class PersistenceError(Exception):
    """The subscription could not be stored."""


def _insert_row(session_factory: sessionmaker[Session], new_subscriber: NewSubscriber) -> None:
    # One pooled connection for one statement; begin() commits or rolls back and releases it.
    with session_factory.begin() as session:
        session.execute(
            insert(Subscription).values(
                id=uuid.uuid4(),
                email=new_subscriber.email,
                name=new_subscriber.name,
                subscribed_at=datetime.now(timezone.utc),
            )
        )


@instrument("saving new subscriber details in the database")
async def insert_subscriber(session_factory: sessionmaker[Session], new_subscriber: NewSubscriber) -> None:
    try:
        await run_in_threadpool(_insert_row, session_factory, new_subscriber)
    except SQLAlchemyError as exc:
        logger.error("failed to execute query", error=repr(exc))
        raise PersistenceError("failed to store subscription") from exc
