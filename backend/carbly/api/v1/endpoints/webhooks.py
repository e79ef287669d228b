"""
Inbound webhooks from Stripe and Yousign.

Both read the raw body so that signatures can be checked against the exact
bytes that were sent.
"""
import json
import logging

from fastapi import APIRouter, Depends, HTTPException, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from carbly.core.exceptions import CarblyError
from carbly.database import get_db
from carbly.services import contract_service, stripe_service, webhook_service

logger = logging.getLogger(__name__)

router = APIRouter()

@router.post("/stripe")
async def stripe_webhook(request: Request, db: AsyncSession = Depends(get_db)):
    payload = await request.body()
    try:
        event = stripe_service.construct_event(payload, request.headers.get("stripe-signature"))
    except stripe_service.WebhookSignatureError as e:
        logger.warning("Rejected Stripe webhook: %s", e)
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid signature") from e
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid payload") from e

    result = await webhook_service.handle_stripe_event(db, event)
    return {"received": True, "result": result}

@router.post("/yousign")
async def yousign_webhook(request: Request, db: AsyncSession = Depends(get_db)):
    """
    Always acknowledges a well-formed event so that Yousign does not retry;
    processing failures are logged and can be recovered with a status check.
    """
    payload = await request.body()
    try:
        contract_service.verify_yousign_signature(payload, request.headers.get("x-yousign-signature-256"))
    except contract_service.YousignSignatureError as e:
        logger.warning("Rejected Yousign webhook: %s", e)
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid signature") from e
    try:
        body = json.loads(payload)
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid payload") from e

    try:
        result = await contract_service.handle_yousign_event(db, body)
    except CarblyError as e:
        logger.error("Yousign event %s could not be applied: %s", body.get("event_name"), e.message)
        return {"received": True, "error": e.message}
    return {"received": True, "result": result}
