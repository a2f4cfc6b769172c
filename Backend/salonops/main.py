import logging

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from . import audit, booking_requests, bookings, branches, catalog, packages, staff, tenants, users
from .core.config import get_settings
from .core.db import AsyncSessionLocal, Base, engine
from .core.errors import SalonOpsError
from .core.responses import ErrorCodes, error_response
from .rate_limiter import RateLimitHeadersMiddleware
from .seed import seed_default_plans


settings = get_settings()
logging.basicConfig(
    level=settings.log_level.upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

app = FastAPI(title="SalonOps Backend")

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.allowed_origins_list or ["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.add_middleware(RateLimitHeadersMiddleware)

app.include_router(bookings.router)
app.include_router(booking_requests.router)
app.include_router(branches.router)
app.include_router(catalog.router)
app.include_router(staff.router)
app.include_router(users.router)
app.include_router(packages.router)
app.include_router(tenants.router)
app.include_router(audit.router)


@app.exception_handler(SalonOpsError)
async def salonops_error_handler(request: Request, exc: SalonOpsError):
    logger.info(f"{request.method} {request.url.path} -> {exc.status_code} {exc.code}: {exc.message}")
    return JSONResponse(
        status_code=exc.status_code,
        content=error_response(exc.code, exc.message, exc.details),
    )


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    logger.exception(f"Unhandled error on {request.method} {request.url.path}")
    message = "Internal server error" if settings.is_production else str(exc)
    return JSONResponse(
        status_code=500,
        content=error_response(ErrorCodes.INTERNAL_ERROR, message),
    )


@app.on_event("startup")
async def on_startup():
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    if settings.seed_default_plans:
        async with AsyncSessionLocal() as session:
            added = await seed_default_plans(session)
        if added:
            logger.info(f"Seeded {added} default subscription plans")


@app.get("/health")
async def healthcheck():
    return {"ok": True}
