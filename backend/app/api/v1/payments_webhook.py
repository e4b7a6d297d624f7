"""Stripe webhook receiver for payment events and a local simulator."""

from __future__ import annotations

import json
from typing import Annotated, Any
from uuid import uuid4

from fastapi import APIRouter, Body, Depends, HTTPException, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.api import deps
from app.core.config import get_settings
from app.core.settings import get_payment_settings
from app.integrations import PaymentGatewayError, StripeClient
from app.services import payment_webhook_service
from app.services.notification_service import BookingNotifier

router = APIRouter(prefix="/payments", tags=["payments-webhook"])


async def _run(
    session: AsyncSession, payload: dict[str, Any], notifier: BookingNotifier
) -> dict[str, Any]:
    try:
        return await payment_webhook_service.process_event(
            session, payload, notifier=notifier
        )
    except Exception as exc:
        # Non-2xx makes the provider redeliver; the failure is on the event row.
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Webhook processing failed",
        ) from exc


@router.post("/webhook", status_code=status.HTTP_200_OK)
async def handle_webhook(
    request: Request,
    session: Annotated[AsyncSession, Depends(deps.get_db_session)],
    gateway: Annotated[StripeClient | None, Depends(deps.get_payment_gateway)],
    notifier: Annotated[BookingNotifier, Depends(deps.get_booking_notifier)],
) -> dict[str, Any]:
    settings = get_payment_settings()
    payload_bytes = await request.body()
    payload: dict[str, Any]

    if settings.payments_webhook_verify:
        signature = request.headers.get("Stripe-Signature")
        if not signature:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="Missing signature header",
            )
        if gateway is None:
            raise HTTPException(
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                detail="Payment gateway is not configured",
            )
        try:
            payload = gateway.construct_event(payload_bytes, signature)
        except PaymentGatewayError as exc:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)
            ) from exc
    else:
        try:
            payload = json.loads(payload_bytes or b"{}")
        except json.JSONDecodeError as exc:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid payload"
            ) from exc
        if not isinstance(payload, dict):
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid payload"
            )

    return await _run(session, payload, notifier)


@router.post("/dev/simulate-webhook", status_code=status.HTTP_200_OK)
async def simulate_webhook(
    session: Annotated[AsyncSession, Depends(deps.get_db_session)],
    notifier: Annotated[BookingNotifier, Depends(deps.get_booking_notifier)],
    payload: dict[str, Any] = Body(...),
) -> dict[str, Any]:
    settings = get_settings()
    if settings.app_env.lower() != "local":
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Simulation route available in local environment only",
        )

    enriched_payload = dict(payload)
    enriched_payload.setdefault("id", f"simulated_{uuid4().hex}")
    return await _run(session, enriched_payload, notifier)
