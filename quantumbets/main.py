from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from contextlib import asynccontextmanager
import logging

# Database migrations are managed exclusively via Alembic
from quantumbets.routers import content, deliveries, tracking
from quantumbets.core.config import settings
from quantumbets.core.exceptions import NotFoundError, InvalidTransitionError

# Configure logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # NOTE: Database migrations are managed by Alembic exclusively.
    # Run: alembic upgrade head
    logger.info("Starting application...")

    import quantumbets.core.background_tasks as background_tasks_module

    if settings.DELIVERY_WORKER_ENABLED:
        background_tasks_module.background_task_manager = background_tasks_module.BackgroundTaskManager()
        await background_tasks_module.background_task_manager.start()
        logger.info("✓ Delivery sweeps started")
    else:
        logger.info("Delivery sweeps disabled, pipeline runs on API or cron triggers")

    logger.info("Application startup complete")

    yield

    logger.info("Application shutdown initiated...")

    if background_tasks_module.background_task_manager:
        await background_tasks_module.background_task_manager.stop()
        logger.info("✓ Delivery sweeps stopped")

    logger.info("Application shutdown complete")


app = FastAPI(
    title="QuantumBets Delivery Backend",
    description="Content delivery and tracking pipeline for the QuantumBets picks newsletter",
    version="1.0.0",
    lifespan=lifespan
)

# Configure CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=[
        settings.FRONTEND_URL,
        settings.SITE_URL,
        "http://localhost:3000",
        "http://127.0.0.1:3000",
    ],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


async def not_found_handler(request: Request, exc: NotFoundError):
    return JSONResponse(
        status_code=404,
        content={"detail": exc.message, "error_code": exc.error_code}
    )


async def invalid_transition_handler(request: Request, exc: InvalidTransitionError):
    logger.warning(f"Rejected {request.method} {request.url.path}: {exc.message}")
    return JSONResponse(
        status_code=409,
        content={"detail": exc.message, "error_code": exc.error_code}
    )


app.add_exception_handler(NotFoundError, not_found_handler)
app.add_exception_handler(InvalidTransitionError, invalid_transition_handler)

app.include_router(content.router)      # Content: /content/* (ingestion, scheduling, analytics)
app.include_router(deliveries.router)   # Deliveries: /deliveries/* (process, retry, reads)
app.include_router(tracking.router)     # Tracking: /tracking/* (open pixel, click redirect, SMS receipts)


@app.get("/")
def read_root():
    return {
        "message": "Welcome to the QuantumBets Delivery API",
        "version": "1.0.0",
        "modules": {
            "content": "/content/* (content ingestion, scheduling and analytics)",
            "deliveries": "/deliveries/* (delivery sweeps and status)",
            "tracking": "/tracking/* (open and click tracking, SMS status callbacks)"
        },
        "docs": "/docs",
        "redoc": "/redoc"
    }


@app.get("/health")
def health_check():
    return {"status": "healthy"}
