import asyncio
import logging
import os
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from redis.exceptions import RedisError
from sqlalchemy.exc import SQLAlchemyError

from . import config
from . import models  # noqa: F401  registers every table before create_all
from .database import Base, SessionLocal, engine
from .domain.prompts.router import router as prompts_router
from .domain.scheduling.queues import JobQueues
from .domain.scheduling.router import router as admin_router
from .domain.suggestions.router import router as suggestions_router
from .domain.tokens.codec import SigningContext
from .domain.tokens.router import router as tokens_router
from .email_service import ResendMailer
from .services import AppServices

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

# Reduce verbosity of third-party libraries
logging.getLogger("httpx").setLevel(logging.WARNING)
logging.getLogger("httpcore").setLevel(logging.WARNING)


async def connect_queues():
    try:
        return await asyncio.wait_for(JobQueues.connect(), timeout=20.0)
    except (RedisError, OSError, asyncio.TimeoutError) as e:
        logger.warning(f"⚠️ Redis unavailable - prompt jobs will run inline and nothing is scheduled: {e}")
        return None


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("🚀 Availability API starting")
    try:
        Base.metadata.create_all(bind=engine, checkfirst=True)
        logger.info("✅ Availability tables ready")
    except SQLAlchemyError as e:
        # Another API process may have won the race to create them
        if "already exists" in str(e) or "duplicate key" in str(e):
            logger.info("ℹ️ Availability tables already exist")
        else:
            logger.error(f"❌ Could not create availability tables: {e}")

    app.state.services = AppServices(
        session_factory=SessionLocal,
        signing=SigningContext.from_config(),
        mailer=ResendMailer(),
        queues=await connect_queues(),
    )

    yield

    logger.info("👋 Availability API shutting down")
    await app.state.services.close()


app = FastAPI(title="Game Night Availability API", version="1.0.0", lifespan=lifespan)


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """A missing dashboard bearer header is an authentication failure, not a 422"""
    errors = exc.errors()
    if any("authorization" in str(error.get("loc", "")).lower() for error in errors):
        logger.warning(f"🔒 {request.method} {request.url.path} without a bearer token")
        return JSONResponse(status_code=401, content={"detail": "Not authenticated"})

    logger.warning(f"⚠️ Rejected {request.method} {request.url.path}: {errors}")
    return JSONResponse(status_code=422, content={"detail": errors})


# The availability form and the group dashboard are served from FRONTEND_URL
ALLOWED_ORIGINS = [o.strip() for o in os.getenv("ALLOWED_ORIGINS", config.FRONTEND_URL).split(",") if o.strip()]

app.add_middleware(
    CORSMiddleware,
    allow_origins=ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["*"],
)

# Routes
app.include_router(tokens_router)
app.include_router(prompts_router)
app.include_router(suggestions_router)
app.include_router(admin_router)


@app.get("/")
def root():
    return {"message": "Game Night Availability API is running"}


@app.get("/health")
def health():
    services = getattr(app.state, "services", None)
    return {"status": "healthy", "queues": services is not None and services.queues is not None}
