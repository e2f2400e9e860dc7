from fastapi import Request
from fastapi.responses import Response

from app.proxy.config import CREDENTIAL_HEADER

ALLOWED_METHODS = ("GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS")

CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Methods": ", ".join(ALLOWED_METHODS),
    "Access-Control-Allow-Headers": f"Content-Type, Accept, Authorization, {CREDENTIAL_HEADER}",
}


def preflight_response() -> Response:
    return Response(status_code=204, headers=CORS_HEADERS)


async def cors_middleware(request: Request, call_next) -> Response:
    """Answer every preflight with 204 and stamp CORS headers on everything else."""
    if request.method == "OPTIONS":
        return preflight_response()
    response = await call_next(request)
    response.headers.update(CORS_HEADERS)
    return response
