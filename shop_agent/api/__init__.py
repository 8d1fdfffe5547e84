from fastapi import Depends, Request
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse

from shop_agent.core.error_handlers import status_for
from shop_agent.dependencies import get_rate_limiter
from shop_agent.domain.results import ServiceResult
from shop_agent.services.rate_limiter import RateLimiter


def respond(result: ServiceResult) -> JSONResponse:
    """Render a ServiceResult as the uniform envelope with a matching status code."""
    if result.success:
        return JSONResponse(content=jsonable_encoder(result.to_envelope()))
    code = status_for(result.error) if result.error is not None else 400
    return JSONResponse(status_code=code, content=jsonable_encoder(result.to_envelope()))


def rate_limit(request: Request, limiter: RateLimiter = Depends(get_rate_limiter)) -> None:
    """Per-client quota on endpoints that start work; raises RateLimitError (429) when exhausted."""
    client = request.client.host if request.client else "unknown"
    limiter.enforce(f"ip_{client}")
