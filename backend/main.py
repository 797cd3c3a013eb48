"""FastAPI application entry point for the skill sync backend."""
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from config import settings
from core.exceptions import register_exception_handlers
from core.skillhub_client import skillhub_client
from routers import skills


def configure_logging() -> None:
    """Configure root logging once for the whole backend."""
    level = logging.DEBUG if settings.debug else getattr(logging, settings.log_level.upper(), logging.INFO)
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    # httpx logs every request at INFO
    logging.getLogger("httpx").setLevel(logging.WARNING)


configure_logging()
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    roots = settings.resolved_install_roots()
    logger.info(f"{settings.app_name} v{settings.app_version} starting, SkillHub at {settings.skillhub_url}")
    logger.info(f"Install roots (search order): {[str(r) for r in roots]}")
    yield
    await skillhub_client.aclose()
    logger.info("SkillHub client closed")


app = FastAPI(
    title=settings.app_name,
    version=settings.app_version,
    debug=settings.debug,
    lifespan=lifespan,
)

# Configure CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

register_exception_handlers(app)

# Include routers
app.include_router(skills.router, prefix="/api/skills", tags=["skills"])


@app.get("/health")
async def health():
    return {"status": "ok", "version": settings.app_version}


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("main:app", host=settings.host, port=settings.port, reload=settings.debug)
