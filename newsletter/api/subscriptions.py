from __future__ import annotations

import structlog
from fastapi import APIRouter, Depends, Form, Response
from sqlalchemy.orm import Session, sessionmaker

from newsletter.db.session import get_session_factory
from newsletter.models.schemas import NewSubscriber
from newsletter.observability.spans import Span
from newsletter.services.subscriptions import PersistenceError, insert_subscriber

router = APIRouter(tags=["subscriptions"])

logger = structlog.get_logger(__name__)


@router.post("/subscriptions")
async def subscribe(
    name: str = Form(...),
    email: str = Form(...),
    session_factory: sessionmaker[Session] = Depends(get_session_factory),
) -> Response:
    new_subscriber = NewSubscriber(name=name, email=email)
    span = Span(
        "adding a new subscriber",
        subscriber_email=new_subscriber.email,
        subscriber_name=new_subscriber.name,
    )
    try:
        with span:
            logger.info("saving new subscriber")
        try:
            await span.instrument(insert_subscriber(session_factory, new_subscriber))
        except PersistenceError:
            with span:
                logger.error("new subscriber details could not be saved")
            return Response(status_code=500)

        with span:
            logger.info("new subscriber details have been saved")
        return Response(status_code=200)
    finally:
        span.close()
