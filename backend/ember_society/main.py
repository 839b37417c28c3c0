from contextlib import asynccontextmanager
from pathlib import Path
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles
import logging

from ember_society.core.config import get_settings
from ember_society.core.database import engine, init_db
from ember_society.realtime import herf_socket
from ember_society.routers import auth, users, posts, clubs, reviews, notifications, upload, messages, events, reports, herf
from ember_society.services.event_reminder_service import EventReminderService, EventReminderScheduler
from ember_society.services.notification_service import get_dispatcher
from ember_society.utils.logger import setup_logging

setup_logging()
logger = logging.getLogger(__name__)

settings = get_settings()


@asynccontextmanager
async def lifespan(app: FastAPI):
    await init_db()

    scheduler = None
    if settings.RUN_EVENT_REMINDERS:
        scheduler = EventReminderScheduler(EventReminderService(get_dispatcher()))
        scheduler.start()
    app.state.reminder_scheduler = scheduler

    logger.info("Ember Society API started")
    yield

    if scheduler is not None:
        scheduler.stop()
    await engine.dispose()


app = FastAPI(
    title="The Ember Society API",
    description="Clubs, posts, reviews, events and live herf sessions for pipe and cigar enthusiasts",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def log_requests(request: Request, call_next):
    try:
        response = await call_next(request)
    except Exception as e:
        logger.exception(f"Unhandled exception on {request.method} {request.url.path}: {e}")
        return JSONResponse(status_code=500, content={"detail": "Internal Server Error"})
    logger.info(f"{request.method} {request.url.path} -> {response.status_code}")
    return response


for module in (auth, users, posts, clubs, reviews, notifications, upload, messages, events, reports, herf):
    app.include_router(module.router, prefix="/api")
app.include_router(herf_socket.router)

Path(settings.UPLOAD_DIR).mkdir(parents=True, exist_ok=True)
app.mount("/uploads", StaticFiles(directory=settings.UPLOAD_DIR), name="uploads")


@app.get("/")
async def root():
    return {"message": "Welcome to The Ember Society API"}


@app.get("/health")
async def health_check():
    return {"status": "ok"}
