import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi_limiter import FastAPILimiter
from sqlalchemy.exc import SQLAlchemyError
import redis.asyncio as redis
from docportal.utils.auth import router as auth_router
from docportal.routers.documents import router as documents_router
from docportal.utils.config import CORS_ORIGINS, LOG_LEVEL, RATE_LIMIT_ENABLED, REDIS_HOST, REDIS_PORT
from docportal.utils.database import engine
import docportal.model.model as models

logging.basicConfig(level=LOG_LEVEL, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
logger = logging.getLogger(__name__)

redis_url = f"redis://{REDIS_HOST}:{REDIS_PORT}"


@asynccontextmanager
async def lifespan(_: FastAPI):
    models.Base.metadata.create_all(bind=engine)
    if RATE_LIMIT_ENABLED:
        redis_connection = redis.from_url(redis_url, encoding="utf8")
        await FastAPILimiter.init(redis_connection)
    yield
    if RATE_LIMIT_ENABLED:
        await FastAPILimiter.close()


app: FastAPI = FastAPI(title="Patient Document Portal", lifespan=lifespan)
app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(auth_router)
app.include_router(documents_router)


@app.exception_handler(SQLAlchemyError)
async def database_error_handler(request: Request, exc: SQLAlchemyError):
    logger.exception("Database error on %s %s", request.method, request.url.path, exc_info=exc)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"detail": "Database error"}
    )


@app.get("/api/health", status_code=status.HTTP_200_OK)
async def health_check():
    return {"status": "ok"}
