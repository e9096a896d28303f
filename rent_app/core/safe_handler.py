import logging
from functools import wraps

from fastapi import HTTPException, Request

from .errors import (
    AuthorizationFailure,
    ExternalServiceFailure,
    NotFoundFailure,
    ValidationFailure,
)
from .friendly_msg import get_friendly_message

logger = logging.getLogger(__name__)

GATEWAY_ACK = {"ResultCode": 0, "ResultDesc": "Accepted"}

ENGINE_FAILURE_STATUS = {
    AuthorizationFailure: 401,
    NotFoundFailure: 404,
    ValidationFailure: 400,
    ExternalServiceFailure: 502,
}


def _find_request(args, kwargs) -> Request | None:
    for arg in list(args) + list(kwargs.values()):
        if isinstance(arg, Request):
            return arg
    return None


def _describe(request: Request | None) -> str:
    if not request:
        return "no request"
    client_ip = request.client.host if request.client else "unknown"
    trace_id = request.headers.get("X-Request-ID", "none")
    return f"TraceID={trace_id} | Path: {request.url.path} | Client: {client_ip}"


def safe_handler(func):
    @wraps(func)
    async def wrapper(*args, **kwargs):
        request = _find_request(args, kwargs)

        try:
            return await func(*args, **kwargs)
        except HTTPException as e:
            logger.warning(f"[HTTPException] {_describe(request)} | {e.status_code}: {e.detail}")
            raise
        except tuple(ENGINE_FAILURE_STATUS) as e:
            status_code = next(
                code for cls, code in ENGINE_FAILURE_STATUS.items() if isinstance(e, cls)
            )
            logger.warning(f"[{type(e).__name__}] {_describe(request)} | {e}")
            raise HTTPException(status_code=status_code, detail=e.message)
        except Exception as e:
            logger.error(
                f"[Unhandled Error] in {func.__name__} | {_describe(request)} | Error: {e}",
                exc_info=True,
            )
            raise HTTPException(status_code=500, detail=get_friendly_message(e))

    return wrapper


def acknowledge_always(func):
    """Gateway callbacks get an Accepted body whatever happens inside.

    A negative answer makes the gateway redeliver, so failures are logged
    for manual reconciliation instead. HTTPException still propagates; it
    is raised only by the callback guard before any processing starts.
    """

    @wraps(func)
    async def wrapper(*args, **kwargs):
        request = _find_request(args, kwargs)

        try:
            result = await func(*args, **kwargs)
        except HTTPException:
            raise
        except Exception as e:
            logger.error(
                f"[Callback Failure] in {func.__name__} | {_describe(request)} | "
                f"Error: {e}. Acknowledged; needs manual reconciliation.",
                exc_info=True,
            )
            return dict(GATEWAY_ACK)
        return dict(GATEWAY_ACK) if result is None else result

    return wrapper
