from fastapi import HTTPException

from dealclaim_api.services.claims.errors import ClaimError


def to_http_exception(error: ClaimError) -> HTTPException:
    """Map a lifecycle error onto its HTTP response."""

    return HTTPException(status_code=error.status_code, detail=error.as_detail())
