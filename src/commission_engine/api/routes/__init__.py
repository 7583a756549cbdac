"""API routes."""

from commission_engine.api.routes.commissions import router as commissions_router
from commission_engine.api.routes.compliance import router as compliance_router
from commission_engine.api.routes.health import router as health_router

__all__ = ["commissions_router", "compliance_router", "health_router"]
