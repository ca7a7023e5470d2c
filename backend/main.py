from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from prometheus_client import generate_latest, CONTENT_TYPE_LATEST
import uvicorn
import logging
from contextlib import asynccontextmanager

from memberhub.core.config import settings
from memberhub.core.database import init_db, AsyncSessionLocal
from memberhub.api.v1 import roster_sync
from memberhub.services.roster_sync.control import build_sync_control
from memberhub.tasks import SyncScheduler

logging.basicConfig(
    level=settings.LOG_LEVEL,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Initialize database
    await init_db()

    control = build_sync_control(settings, AsyncSessionLocal)
    await control.status_store.restore()
    app.state.sync_control = control

    scheduler = SyncScheduler(control, settings.SYNC_INTERVAL_MINUTES)
    await scheduler.start()

    yield

    await scheduler.stop()
    await control.shutdown()


app = FastAPI(
    title=settings.APP_NAME,
    description="Membership records reconciled with an external roster",
    version="1.0.0",
    lifespan=lifespan
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include API routers
app.include_router(roster_sync.router, prefix="/api/v1/roster-sync", tags=["roster-sync"])


@app.get("/")
async def root():
    return {"message": f"{settings.APP_NAME} API", "status": "running"}


@app.get("/health")
async def health_check():
    return {"status": "healthy", "version": "1.0.0"}


@app.get("/metrics")
async def metrics():
    """Prometheus metrics for monitoring."""
    return Response(generate_latest(), media_type=CONTENT_TYPE_LATEST)


@app.exception_handler(HTTPException)
async def http_exception_handler(request, exc):
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.detail, "status_code": exc.status_code}
    )


if __name__ == "__main__":
    uvicorn.run(
        "main:app",
        host=settings.HOST,
        port=settings.PORT,
        reload=settings.DEBUG,
        log_level="info" if not settings.DEBUG else "debug"
    )
