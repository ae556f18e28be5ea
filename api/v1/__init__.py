from fastapi import APIRouter

from schemas.dto.responses.common import ErrorEnvelope

from . import data, keys, usage, webhooks

# Every failure under /api/v1 is rendered by errors.register_error_handlers.
ERROR_RESPONSES = {
    status: {"model": ErrorEnvelope} for status in (400, 401, 403, 404, 409, 422, 429, 502, 503)
}

api_v1 = APIRouter(prefix="/api/v1", responses=ERROR_RESPONSES)

api_v1.include_router(keys.router)
api_v1.include_router(webhooks.router)
api_v1.include_router(usage.router)
api_v1.include_router(data.router)
