# Dayplan API Main Entry Point
import logging
import sys
from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi import Limiter, _rate_limit_exceeded_handler
from slowapi.util import get_remote_address
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware

from .errors import DayplanError
from .settings import settings
from .routers.ready import router as ready_router
from .routers.daily_plan import router as daily_plan_router
from .routers.time_blocks import router as time_blocks_router
from .routers.exit_gate import router as exit_gate_router
from .routers.shopping import router as shopping_router

# Configure structured logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    handlers=[logging.StreamHandler(sys.stdout)]
)
logger = logging.getLogger("dayplan")

# Rate limiter (per-IP); the middleware applies the default limit to every route
limiter = Limiter(key_func=get_remote_address, default_limits=[settings.rate_limit_default])

app = FastAPI(title="Dayplan API", version="0.1.0")
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)


async def dayplan_error_handler(request: Request, exc: DayplanError):
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} -> {exc.status_code}: {exc.detail}")
    return JSONResponse(status_code=exc.status_code, content=jsonable_encoder(exc.to_dict()))


async def validation_error_handler(request: Request, exc: RequestValidationError):
    # Malformed input is a plain 400, same as domain validation
    return JSONResponse(
        status_code=400,
        content=jsonable_encoder({
            "detail": "Invalid request",
            "code": "invalid_input",
            "errors": [{k: v for k, v in e.items() if k != "ctx"} for e in exc.errors()],
        }),
    )


app.add_exception_handler(DayplanError, dayplan_error_handler)
app.add_exception_handler(RequestValidationError, validation_error_handler)

app.add_middleware(SlowAPIMiddleware)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(ready_router, prefix="/api", tags=["ready"])
app.include_router(daily_plan_router, prefix="/api", tags=["daily-plan"])
app.include_router(time_blocks_router, prefix="/api", tags=["time-blocks"])
app.include_router(exit_gate_router, prefix="/api", tags=["exit-gate"])
app.include_router(shopping_router, prefix="/api", tags=["shopping"])
