from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError

from .config import settings
from .db import init_db
from .errors import ChurpayError
from .logging import configure_logging, logger
from .routers import admin, payfast, payments

configure_logging()


@asynccontextmanager
async def lifespan(_: FastAPI):
    # init db tables, no migrations
    await init_db()
    logger.info("churpay backend started env=%s payfast_mode=%s", settings.env, settings.payfast_mode)
    yield


app = FastAPI(title="Churpay Backend", lifespan=lifespan)

cors_origins = [o.strip() for o in settings.cors_origins.split(",") if o.strip()]
app.add_middleware(
    CORSMiddleware,
    allow_origins=cors_origins or ["*"],
    allow_credentials=bool(cors_origins),
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(payfast.router)
app.include_router(admin.router)
app.include_router(payments.router)


@app.exception_handler(ChurpayError)
async def churpay_error_handler(request: Request, exc: ChurpayError):
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": {"code": exc.code, "message": exc.message}},
    )


@app.exception_handler(SQLAlchemyError)
async def database_error_handler(request: Request, exc: SQLAlchemyError):
    logger.error("%s %s database error: %r", request.method, request.url.path, exc)
    return JSONResponse(
        status_code=500,
        content={"error": {"code": ChurpayError.code, "message": "database error"}},
    )


@app.get("/")
async def root():
    return {"message": "Churpay Backend is running"}


@app.get("/api/health")
async def health():
    return {"ok": True, "service": "backend"}


if __name__ == "__main__":
    uvicorn.run("churpay.main:app", host=settings.app_host, port=settings.app_port, reload=(settings.env != "production"))
