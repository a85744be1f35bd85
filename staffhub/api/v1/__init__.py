"""V1 API router aggregation."""

from fastapi import APIRouter

from staffhub.api.v1.billing import router as billing_router
from staffhub.api.v1.members import router as members_router
from staffhub.api.v1.paypal import router as paypal_router
from staffhub.api.v1.tenants import router as tenants_router

v1_router = APIRouter(prefix="/v1")
v1_router.include_router(tenants_router)
v1_router.include_router(members_router)
v1_router.include_router(billing_router)
v1_router.include_router(paypal_router)
