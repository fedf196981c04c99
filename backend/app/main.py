from contextlib import asynccontextmanager
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles
from app.api import agents, profile, projects, videos
from app.database import engine, Base
from app.config import get_settings
from app.exceptions import PipelineError
# Import all models to ensure they're registered with Base
from app.models import Project, Video, Agent, Profile, Transcription
from app.services.ai.content_agent import AgentLockRegistry, ContentAgent
from app.services.ai.image_client import ImageClient
from app.services.ai.llm_client import LLMClient
from app.services.error_classifier import classify, http_status_for
from app.services.job_scheduler import TranscriptionScheduler
from app.services.media_engine import MediaEngine
from app.services.storage import get_storage
from app.services.video_processor import MediaProbe
import logging

settings = get_settings()

# Setup logging
logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


def _dispatch_probe(video_id: str):
    from app.workers.tasks import probe_video_task
    probe_video_task.delay(video_id)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Create tables
    Base.metadata.create_all(bind=engine)

    media_engine = MediaEngine().acquire()
    storage = get_storage()
    llm = LLMClient()
    images = ImageClient()

    app.state.media_engine = media_engine
    app.state.storage = storage
    app.state.scheduler = TranscriptionScheduler()
    app.state.dispatch_probe = _dispatch_probe
    app.state.content_agent = ContentAgent(
        llm, images, storage,
        probe=MediaProbe(media_engine),
        locks=AgentLockRegistry(),
    )
    logger.info(f"{settings.APP_NAME} {settings.VERSION} started ({settings.ENVIRONMENT})")

    yield

    await llm.close()
    await images.close()
    media_engine.release()
    logger.info("Shutdown complete")


app = FastAPI(
    title=settings.APP_NAME,
    version=settings.VERSION,
    debug=settings.DEBUG,
    lifespan=lifespan,
)

# Dynamic CORS
origins = settings.ALLOWED_ORIGINS
if not origins:
    # Allow all origins in development
    origins = ["*"]

app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(PipelineError)
async def pipeline_error_handler(request: Request, exc: PipelineError):
    classified = classify(exc)
    status_code = http_status_for(exc)
    if status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed ({classified.kind}): {exc.message}")
    return JSONResponse(status_code=status_code, content={"error": classified.model_dump()})


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    logger.exception(f"{request.method} {request.url.path} failed: {exc}")
    return JSONResponse(status_code=http_status_for(exc), content={"error": classify(exc).model_dump()})


# Serve static files
app.mount("/storage", StaticFiles(directory=str(settings.BASE_STORAGE_PATH)), name="storage")

# Include routers
app.include_router(projects.router, prefix="/api", tags=["projects"])
app.include_router(videos.router, prefix="/api", tags=["videos"])
app.include_router(agents.router, prefix="/api", tags=["agents"])
app.include_router(profile.router, prefix="/api", tags=["profile"])


@app.get("/")
def root():
    return {
        "app": settings.APP_NAME,
        "version": settings.VERSION,
        "status": "running",
        "environment": settings.ENVIRONMENT
    }


@app.get("/health")
def health_check():
    return {"status": "healthy"}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run("app.main:app", host=settings.HOST, port=settings.PORT, reload=settings.DEBUG)
