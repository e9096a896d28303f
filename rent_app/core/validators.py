import hmac

from fastapi import HTTPException, Request, status

from .settings import settings

ADMIN_KEY_HEADER = "X-Admin-Key"


async def require_operator_key(request: Request):
    """Guards manual operations. Open when no ADMIN_API_KEY is configured."""
    expected = settings.ADMIN_API_KEY
    if not expected:
        return
    supplied = request.headers.get(ADMIN_KEY_HEADER)
    if not supplied or not hmac.compare_digest(supplied, expected):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or missing admin key",
        )
