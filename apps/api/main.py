from fastapi import FastAPI, Request, HTTPException
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
import time
import uuid
import logging

import packages.config as config
from packages.error_reporting import init_error_reporting
from packages.errors import RangeWriteError, ValidationError
from packages.logging_utils import setup_logging
from packages.request_context import request_id_var
from packages.metrics import inc, observe
from .routes import activities as activities_routes
from .routes import best_efforts as best_efforts_routes
from .routes import health as health_routes
from .routes import jobs as jobs_routes
from .routes import metrics as metrics_routes
from .routes import training_load as training_load_routes


setup_logging()
init_error_reporting("training-api", enable_fastapi=True)
logger = logging.getLogger("training.api")

app = FastAPI(title="Training Load Analytics API")


def format_error(code: str, message: str, request_id: str | None = None, details: dict | None = None):
    payload = {"error": {"code": code, "message": message, "request_id": request_id}}
    if details:
        payload["error"]["details"] = details
    return payload


app.add_middleware(
    CORSMiddleware,
    allow_origins=config.CORS_ORIGINS,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def request_logging(request: Request, call_next):
    request_id = request.headers.get("x-request-id") or uuid.uuid4().hex
    token = request_id_var.set(request_id)
    start = time.perf_counter()
    response = None
    try:
        response = await call_next(request)
        return response
    except Exception:
        duration_ms = (time.perf_counter() - start) * 1000
        logger.exception("request_error %s %s %.1fms", request.method, request.url.path, duration_ms)
        raise
    finally:
        duration_ms = (time.perf_counter() - start) * 1000
        status_code = getattr(response, "status_code", "ERR")
        inc("http_requests_total")
        inc("http_requests_total", status=status_code)
        observe("http_request_duration_seconds", duration_ms / 1000.0)
        logger.info("%s %s -> %s %.1fms", request.method, request.url.path, status_code, duration_ms)
        request_id_var.reset(token)
        if response is not None:
            response.headers["x-request-id"] = request_id

# Consistent error model
@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException):
    req_id = request_id_var.get() or "-"
    message = exc.detail if isinstance(exc.detail, str) else "Request failed"
    code = f"http_{exc.status_code}"
    details = exc.detail if isinstance(exc.detail, dict) else None
    return JSONResponse(status_code=exc.status_code, content=format_error(code, message, req_id, details))


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    req_id = request_id_var.get() or "-"
    details = {"errors": [{"loc": list(e.get("loc", ())), "msg": e.get("msg")} for e in exc.errors()]}
    return JSONResponse(status_code=422, content=format_error("invalid_request", "Invalid request", req_id, details))


@app.exception_handler(ValidationError)
async def activity_validation_handler(request: Request, exc: ValidationError):
    req_id = request_id_var.get() or "-"
    return JSONResponse(
        status_code=422,
        content=format_error("validation_error", str(exc), req_id, exc.to_dict()),
    )


@app.exception_handler(RangeWriteError)
async def range_write_handler(request: Request, exc: RangeWriteError):
    req_id = request_id_var.get() or "-"
    logger.error("range_write_error %s %s", request.method, request.url.path)
    return JSONResponse(
        status_code=503,
        content=format_error("range_write_failed", "Storage failure; range rolled back", req_id, exc.to_dict()),
    )


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    req_id = request_id_var.get() or "-"
    logger.exception("unhandled_exception %s %s", request.method, request.url.path)
    return JSONResponse(status_code=500, content=format_error("internal_error", "Internal server error", req_id))

ROUTERS = (
    health_routes.router,
    metrics_routes.router,
    jobs_routes.router,
    activities_routes.router,
    training_load_routes.router,
    best_efforts_routes.router,
)

# Public routes (unprefixed) + /api + /api/v1
for prefix in ("", "/api", "/api/v1"):
    for router in ROUTERS:
        app.include_router(router, prefix=prefix)
