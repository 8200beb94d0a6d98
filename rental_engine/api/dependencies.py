"""
Shared request dependencies and error translation for the API routes.
"""
from fastapi import Header, HTTPException, status
import logging

from ..exceptions import RentalEngineError

logger = logging.getLogger(__name__)


async def get_tenant_id(x_tenant_id: str = Header(..., alias="X-Tenant-ID")) -> str:
    """Tenant every request is scoped to."""
    tenant_id = x_tenant_id.strip()
    if not tenant_id:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={"error": "MISSING_TENANT", "message": "X-Tenant-ID header is required"}
        )
    return tenant_id


def engine_error_response(exc: RentalEngineError) -> HTTPException:
    logger.info(f"{exc.error_code}: {exc.message}")
    return HTTPException(status_code=exc.status_code, detail=exc.to_detail())
