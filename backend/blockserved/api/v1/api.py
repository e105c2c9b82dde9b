"""
Main API router aggregator
"""
from fastapi import APIRouter

from blockserved.api.v1.endpoints import (
    access,
    audit,
    cases,
    documents_v2,
    energy,
    health,
    notices,
    pdf_simple,
    recipient,
    reconciliation,
)

api_router = APIRouter()

# Include routers
api_router.include_router(notices.router, prefix="/notices", tags=["Notices"])
api_router.include_router(recipient.router, prefix="/recipient", tags=["Recipient"])
api_router.include_router(access.router, prefix="/access", tags=["Access Control"])
api_router.include_router(audit.router, prefix="/audit", tags=["Audit"])
api_router.include_router(documents_v2.router, prefix="/v2/documents", tags=["Documents"])
api_router.include_router(pdf_simple.router, prefix="/pdf-simple", tags=["Simple PDF"])
api_router.include_router(cases.router, prefix="/cases", tags=["Cases"])
api_router.include_router(energy.router, prefix="/energy", tags=["Energy"])
api_router.include_router(reconciliation.router, prefix="/reconciliation", tags=["Reconciliation"])
api_router.include_router(health.router, prefix="/health", tags=["Health"])
