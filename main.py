# main.py
import logging

import uvicorn
from fastapi import FastAPI, Request
from contextlib import asynccontextmanager
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException
from vidtube.config import settings
from vidtube.database import startup_database, shutdown_database
from vidtube.middleware import LoggingMiddleware
from vidtube.routers import dashboard, subscriptions, users, videos

logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S"
)
# SQL statements from psycopg only when asked for
logging.getLogger("psycopg").setLevel(logging.DEBUG if settings.log_sql else logging.WARNING)
logging.getLogger("azure").setLevel(logging.WARNING)

logger = logging.getLogger(__name__)

@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup
    await startup_database()
    logger.info("VidTube API started")
    yield

    await shutdown_database()
    logger.info("VidTube API stopped")

app = FastAPI(
    title="VidTube API",
    description="Video sharing backend: accounts, subscriptions, watch history and channel stats",
    version="1.0.0",
    lifespan=lifespan
)

app.add_middleware(LoggingMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

def _error_envelope(status_code: int, message: str, data=None) -> dict:
    return {"status_code": status_code, "data": data, "message": message, "success": False}

@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException):
    return JSONResponse(
        status_code=exc.status_code,
        content=_error_envelope(exc.status_code, str(exc.detail)),
        headers=getattr(exc, "headers", None),
    )

@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    return JSONResponse(
        status_code=400,
        content=_error_envelope(400, "Invalid request", jsonable_encoder(exc.errors())),
    )

@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    logger.error(
        f"Unhandled exception: {exc.__class__.__name__}: {str(exc)}",
        exc_info=exc,
        extra={"path": str(request.url), "method": request.method}
    )
    return JSONResponse(status_code=500, content=_error_envelope(500, "Internal server error"))

# Include routers
app.include_router(users.router, prefix="/users", tags=["Users"])
app.include_router(subscriptions.router, prefix="/subscriptions", tags=["Subscriptions"])
app.include_router(videos.router, prefix="/videos", tags=["Videos"])
app.include_router(dashboard.router, prefix="/dashboard", tags=["Dashboard"])


@app.get("/health")
async def root():
    return {"status": "ok"}

# You can run this file using: uvicorn main:app --reload
if __name__ == "__main__":
    uvicorn.run(app, host="0.0.0.0", port=8000)
