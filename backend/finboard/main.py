from fastapi import FastAPI, HTTPException, Request
from fastapi.exception_handlers import http_exception_handler
from fastapi.responses import JSONResponse
import logging

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)

from finboard.db_helpers import (
    authenticate_internal_request_from_headers,
    clear_request_user_id,
    get_request_user_id,
    set_request_user_id,
)
from finboard.routes import api_router

logger = logging.getLogger(__name__)

# Only the frontend server calls this API (signed headers): no CORS, no docs.
app = FastAPI(
    title="Finboard API",
    description="Subscription detection and cost summaries for Finboard",
    version="0.1.0",
    docs_url=None,
    redoc_url=None,
    openapi_url=None,
)


UNPROTECTED_API_PATHS = {"/api/health"}


@app.middleware("http")
async def internal_auth_middleware(request: Request, call_next):
    path = request.url.path
    if not path.startswith("/api/") or path in UNPROTECTED_API_PATHS:
        return await call_next(request)

    path_with_query = path
    if request.url.query:
        path_with_query = f"{path_with_query}?{request.url.query}"

    try:
        request_user_id = authenticate_internal_request_from_headers(
            method=request.method,
            path_with_query=path_with_query,
            headers=request.headers,
        )
    except HTTPException as exc:
        logger.warning(
            "Rejected request %s %s: status=%d detail=%s",
            request.method,
            path,
            exc.status_code,
            exc.detail,
        )
        return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail})

    token = set_request_user_id(request_user_id)
    try:
        response = await call_next(request)
    finally:
        clear_request_user_id(token)

    return response


@app.exception_handler(HTTPException)
async def log_http_exception(request: Request, exc: HTTPException):
    """Log API errors with the signed user before the default JSON response."""
    level = logging.ERROR if exc.status_code >= 500 else logging.INFO
    logger.log(
        level,
        "%s %s failed for user %s: status=%d detail=%s",
        request.method,
        request.url.path,
        get_request_user_id() or "-",
        exc.status_code,
        exc.detail,
    )
    return await http_exception_handler(request, exc)


app.include_router(api_router, prefix="/api")


@app.get("/health")
def health():
    return {"status": "healthy"}
