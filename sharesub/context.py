"""Collaborators built once at startup and handed to every service call."""

from dataclasses import dataclass

from fastapi import Request

from sharesub.config import Settings
from sharesub.locks import PlanLocks
from sharesub.services.email_service import EmailSender
from sharesub.services.payment_gateway import PaymentGateway


@dataclass
class AppContext:
    settings: Settings
    gateway: PaymentGateway
    mailer: EmailSender
    locks: PlanLocks


def build_context(settings: Settings) -> AppContext:
    return AppContext(
        settings=settings,
        gateway=PaymentGateway(settings),
        mailer=EmailSender(settings),
        locks=PlanLocks(settings.redis_url),
    )


def get_context(request: Request) -> AppContext:
    """FastAPI dependency returning the context stored on app.state."""
    return request.app.state.context
