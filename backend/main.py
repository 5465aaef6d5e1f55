from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
import uvicorn
import logging
from contextlib import asynccontextmanager

from timetable_sync.core.config import settings
from timetable_sync.core.exceptions import TimetableSyncError, EntityNotFoundError
from timetable_sync.api.deps import get_school_data
from timetable_sync.api.v1 import timetable, attendance, imports, sync

logging.basicConfig(
    level=settings.LOG_LEVEL,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Load persisted state and resume replication if paired
    school = get_school_data()

    yield

    school.bridge.disconnect()
    await school.bridge.drain()
    await school.blob_store.flush()
    await school.backend.close()


app = FastAPI(
    title="Timetable Sync API",
    description="Mirrored teacher/class timetables with real-time replication",
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
app.include_router(timetable.router, prefix="/api/v1/timetable", tags=["timetable"])
app.include_router(attendance.router, prefix="/api/v1/attendance", tags=["attendance"])
app.include_router(imports.router, prefix="/api/v1/imports", tags=["imports"])
app.include_router(sync.router, prefix="/api/v1/sync", tags=["sync"])


@app.get("/")
async def root():
    return {"message": "Timetable Sync API", "status": "running"}


@app.get("/health")
async def health_check():
    return {"status": "healthy", "version": "1.0.0"}


@app.exception_handler(HTTPException)
async def http_exception_handler(request, exc):
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.detail, "status_code": exc.status_code}
    )


@app.exception_handler(TimetableSyncError)
async def timetable_error_handler(request, exc):
    status_code = 404 if isinstance(exc, EntityNotFoundError) else 400
    return JSONResponse(
        status_code=status_code,
        content={"detail": exc.message, "code": exc.code, "status_code": status_code}
    )


@app.exception_handler(Exception)
async def general_exception_handler(request, exc):
    logger.error(f"Unhandled error on {request.url.path}: {exc}")
    return JSONResponse(
        status_code=500,
        content={"detail": "Internal server error", "status_code": 500}
    )


if __name__ == "__main__":
    uvicorn.run(
        "main:app",
        host=settings.HOST,
        port=settings.PORT,
        reload=settings.DEBUG,
        log_level="info" if not settings.DEBUG else "debug"
    )
