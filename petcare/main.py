# petcare/main.py
import logging
import os
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI, Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from starlette.exceptions import HTTPException as StarletteHTTPException

from . import __version__
from .config import get_settings
from .core.logging import setup_logging
from .database import create_tables
from .exceptions import PetCareError
from .limiter import limiter
from .routers import (
    appointments, auth, chat, clinics, health, medical_records, owners, pets, prescriptions, uploads, vets,
)
from .services.knowledge_base import KnowledgeBase

logger = logging.getLogger(__name__)
settings = get_settings()


@asynccontextmanager
async def lifespan(app: FastAPI):
    setup_logging()
    os.makedirs(settings.upload_dir, exist_ok=True)
    create_tables()
    app.state.knowledge_base = KnowledgeBase.load(settings.knowledge_base_path)
    logger.info(f"{settings.app_name} {__version__} started ({settings.environment})")
    yield
    logger.info(f"{settings.app_name} shutting down")


app = FastAPI(
    title=settings.app_name,
    version=__version__,
    description="Veterinary clinic platform: owners, vets, clinics, pets, appointments and records.",
    lifespan=lifespan,
)

app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
    allow_headers=["*"],
)


# --- Error handlers ---
@app.exception_handler(PetCareError)
async def petcare_error_handler(request: Request, exc: PetCareError):
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.message} ({exc.error})")
    return JSONResponse(
        status_code=exc.status_code,
        content=jsonable_encoder(exc.to_dict(include_error=not settings.is_production)),
    )


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    return JSONResponse(status_code=exc.status_code, content={"message": str(exc.detail)}, headers=exc.headers)


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    body = {"message": "Invalid request"}
    if not settings.is_production:
        body["error"] = jsonable_encoder(exc.errors())
    return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content=body)


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    logger.exception(f"Unhandled error on {request.method} {request.url.path}")
    body = {"message": "Internal server error"}
    if not settings.is_production:
        body["error"] = str(exc)
    return JSONResponse(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, content=body)


# --- Routers ---
API_PREFIX = "/api"
for module in (auth, owners, vets, clinics, pets, appointments, medical_records, prescriptions, chat, uploads, health):
    app.include_router(module.router, prefix=API_PREFIX)

app.mount("/uploads", StaticFiles(directory=settings.upload_dir, check_dir=False), name="uploads")


@app.get("/", tags=["Health Checks"])
def root():
    return {"message": f"{settings.app_name} is running", "version": __version__, "docs": "/docs"}


if __name__ == "__main__":
    uvicorn.run("petcare.main:app", host="0.0.0.0", port=8000, reload=settings.debug)
