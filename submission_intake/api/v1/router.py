from fastapi import APIRouter

from submission_intake.api.v1.endpoints import email_intake, field_schema

# Create API router
api_router = APIRouter()

# Include routers
api_router.include_router(email_intake.router, prefix="/email-intake", tags=["Email Intake"])
api_router.include_router(field_schema.router, tags=["Field Schema"])

__all__ = ["api_router"]
