"""Webhook routes: Stripe."""

import logging

import stripe
from fastapi import APIRouter, Depends, Header, HTTPException, Request
from sqlalchemy.ext.asyncio import AsyncSession

from sharesub.context import AppContext, get_context
from sharesub.db.session import get_db
from sharesub.services.event_service import dispatch_event

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/webhooks", tags=["webhooks"])


@router.post("/stripe")
async def stripe_webhook(
    request: Request,
    stripe_signature: str = Header(alias="stripe-signature"),
    db: AsyncSession = Depends(get_db),
    ctx: AppContext = Depends(get_context),
):
    payload = await request.body()

    try:
        event = ctx.gateway.construct_event(payload, stripe_signature)
    except stripe.SignatureVerificationError:
        raise HTTPException(status_code=400, detail="Invalid signature")
    except ValueError:
        raise HTTPException(status_code=400, detail="Invalid payload")

    logger.info(f"Stripe webhook: {event['type']} ({event.get('id')})")

    # Handler failures are logged inside dispatch; Stripe still gets a 200
    await dispatch_event(event, db, ctx)

    return {"status": "ok"}
