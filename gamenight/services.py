"""
Process-wide service objects
Built once at start-up (FastAPI lifespan or arq on_startup) and handed to routes and jobs
"""

import logging
from typing import Callable, Optional

from fastapi import Request
from sqlalchemy.orm import Session

from .domain.tokens.codec import SigningContext

logger = logging.getLogger(__name__)


class AppServices:
    """Signing context, email transport, job queues and a session factory"""

    def __init__(
        self,
        session_factory: Callable[[], Session],
        signing: SigningContext,
        mailer,
        queues=None,
    ):
        self.session_factory = session_factory
        self.signing = signing
        self.mailer = mailer
        self.queues = queues

    async def close(self):
        if self.queues is not None:
            await self.queues.close()
            logger.info("🔌 Job queue connection closed")


def get_services(request: Request) -> AppServices:
    """Dependency injection for the process-wide services"""
    services: Optional[AppServices] = getattr(request.app.state, "services", None)
    if services is None:
        raise RuntimeError("Application services not initialised")
    return services
