import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.exc import OperationalError

from . import config
from .database import Base, engine
from .errors import DatabaseUnavailable, MarketplaceError
from .routes import catalog, checkout, dashboard, inventory, notifications, orders, shipping, shopping, stores

logging.basicConfig(level=config.LOG_LEVEL, format="%(asctime)s %(levelname)s %(name)s %(message)s")
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    Base.metadata.create_all(bind=engine)
    logger.info("[api] schema ready")
    yield


app = FastAPI(title="Marketplace API", lifespan=lifespan)

for module in (checkout, orders, dashboard, notifications, inventory, catalog, shopping, stores, shipping):
    app.include_router(module.router)


@app.exception_handler(MarketplaceError)
def marketplace_error(request: Request, exc: MarketplaceError):
    if exc.status_code >= 500:
        logger.error("[api] %s %s failed: %s", request.method, request.url.path, exc.message)
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.exception_handler(RequestValidationError)
def request_validation_error(request: Request, exc: RequestValidationError):
    details = [
        {"field": ".".join(str(p) for p in err["loc"] if p != "body"), "message": err["msg"]}
        for err in exc.errors()
    ]
    return JSONResponse(
        status_code=400,
        content={"error": "validation_error", "message": "Invalid request", "details": details},
    )


@app.exception_handler(OperationalError)
def database_error(request: Request, exc: OperationalError):
    logger.error("[api] database unavailable on %s %s: %s", request.method, request.url.path, exc)
    return JSONResponse(status_code=500, content=DatabaseUnavailable("Database unavailable").to_dict())


@app.exception_handler(Exception)
def unexpected_error(request: Request, exc: Exception):
    logger.exception("[api] unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(status_code=500, content={"error": "internal_error", "message": "Internal server error"})


@app.get("/health")
def health():
    return {"status": "ok"}
