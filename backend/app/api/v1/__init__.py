"""Versioned API router."""

from fastapi import APIRouter

from . import admin_bookings, auth, bookings, health, payments, payments_webhook

router = APIRouter()
router.include_router(health.router, prefix="/health", tags=["health"])
router.include_router(auth.router, prefix="/auth", tags=["auth"])
router.include_router(bookings.router)
router.include_router(payments.router)
router.include_router(payments_webhook.router)
router.include_router(admin_bookings.router)

__all__ = ["router"]
