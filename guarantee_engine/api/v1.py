"""Centralized v1 API router — all module routers are included here."""

from fastapi import APIRouter

from guarantee_engine.modules.escrow.router import admin_router as escrow_admin_router
from guarantee_engine.modules.escrow.router import public_router as escrow_router

v1_router = APIRouter(prefix="/api/v1")
v1_router.include_router(escrow_router)
v1_router.include_router(escrow_admin_router)
