from contextlib import asynccontextmanager

from fastapi import FastAPI, Depends
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy import text
from sqlalchemy.ext.asyncio.session import AsyncSession

from jobqueue.api.v1 import api_v1_router
from jobqueue.core import settings
from jobqueue.core.logger import info, error
from jobqueue.core.setup_logger import api_logger
from jobqueue.db import get_db, init_database, close_database


@asynccontextmanager
async def lifespan(app: FastAPI):
    info(api_logger, "FastAPI application starting...")
    await init_database()
    yield
    await close_database()
    info(api_logger, "FastAPI application stopped")


app = FastAPI(
    title=settings.PROJECT_NAME,
    version=settings.VERSION,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=settings.ALLOW_CREDENTIALS,
    allow_methods=settings.CORS_METHODS,
    allow_headers=settings.CORS_HEADERS,
)

app.include_router(api_v1_router, prefix=settings.API_V1_STR)


@app.get("/")
def health_check():
    return {"status": "ok", "message": "Application running"}


@app.get("/db-health")
async def db_health_check(db: AsyncSession = Depends(get_db)):
    try:
        result = await db.execute(text('SELECT 1'))
        _ = result.scalar()
        return {"status": "ok", "message": "Database running"}
    except Exception as e:
        error(api_logger, "Database health check failed", context={"error": str(e)})
        return {"status": "error", "message": str(e)}
