from __future__ import annotations

import structlog
from fastapi import FastAPI, Request, Response
from fastapi.exceptions import RequestValidationError

from newsletter.api.health_check import router as health_check_router
from newsletter.api.subscriptions import router as subscriptions_router
from newsletter.observability.middleware import RequestSpanMiddleware


logger = structlog.get_logger(__name__)


async def _invalid_request(request: Request, exc: RequestValidationError) -> Response:
    missing = sorted({str(error["loc"][-1]) for error in exc.errors() if error.get("loc")})
    logger.warning("rejected invalid request", missing_fields=",".join(missing))
    return Response(status_code=400)


def create_app() -> FastAPI:
    application = FastAPI(title="Newsletter", version="0.1.0")
    application.include_router(health_check_router)
    application.include_router(subscriptions_router)
    application.add_exception_handler(RequestValidationError, _invalid_request)
    application.add_middleware(RequestSpanMiddleware)
    return application


app = create_app()
