"""API router registry used by the app factory.

Keeps route module imports and inclusion order in one place so
`storefront.main` stays focused on startup wiring.
"""

from __future__ import annotations

from fastapi import APIRouter

from . import (
    admin,
    auth,
    checkout,
    cron,
    downloads,
    files,
    health,
    orders,
    payouts,
    receipts,
    seller,
)

API_PREFIX = "/api"

API_ROUTERS: tuple[APIRouter, ...] = (
    health.router,
    checkout.router,
    orders.router,
    downloads.router,
    payouts.router,
    receipts.router,
    auth.router,
    seller.router,
    admin.router,
    cron.router,
)

# Mounted at the root: signed URLs point at /files/<path>
ROOT_ROUTERS: tuple[APIRouter, ...] = (
    files.router,
)

__all__ = ["API_PREFIX", "API_ROUTERS", "ROOT_ROUTERS"]
