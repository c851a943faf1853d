# labsync/app.py
from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from starlette.exceptions import HTTPException as StarletteHTTPException

from labsync import config
from labsync.middleware.ratelimit import limiter
from labsync.middleware.tracing import TracingMiddleware
from labsync.models import init_db
from labsync.routes import marker_routes, upload_routes
from labsync.utils.exceptions import (
    handle_http_exception,
    handle_rate_limit,
    handle_unhandled_exception,
    handle_validation_error,
)
from labsync.utils.log import configure_logging

logger = configure_logging()

app = FastAPI(title="LabSync Backend", version="0.1.0")

app.state.limiter = limiter
app.add_middleware(SlowAPIMiddleware)
app.add_middleware(TracingMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=config.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.add_exception_handler(StarletteHTTPException, handle_http_exception)
app.add_exception_handler(RequestValidationError, handle_validation_error)
app.add_exception_handler(RateLimitExceeded, handle_rate_limit)
app.add_exception_handler(Exception, handle_unhandled_exception)


@app.on_event("startup")
def _init_db():
    init_db()
    logger.info({"function": "startup", "status": "ready"})


@app.get("/api/health")
def health():
    return {"status": "ok"}


app.include_router(upload_routes.router)
app.include_router(marker_routes.router)
