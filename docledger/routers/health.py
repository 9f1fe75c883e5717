"""
Health Router

- /healthz - liveness (is the process running?)
- /readyz  - readiness (ledger initialized and chain intact?)
"""

from datetime import datetime, timezone

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse


router = APIRouter(tags=["Health"])


@router.get("/healthz")
async def health_check():
    """Liveness probe."""
    return {"status": "ok", "timestamp": datetime.now(timezone.utc).isoformat()}


@router.get("/readyz")
async def readiness_check(request: Request):
    """
    Readiness probe.

    503 "degraded" when the ledger fails validation.
    """
    service = request.app.state.ledger_service
    chain_ok = service.ledger.validate_chain()
    body = {
        "status": "ready" if chain_ok else "degraded",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "checks": {
            "ledger": {
                "blocks": len(service.ledger),
                "chain_integrity": chain_ok,
            },
        },
    }
    return JSONResponse(status_code=200 if chain_ok else 503, content=body)
