import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from app.config import LOG_LEVEL
from app.database import create_db_and_tables
from app.errors import PartialFailureError, TeamError
from app.store import StoreError
from app.services.streams import StateHub

logging.basicConfig(
    level=LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s"
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan events."""
    # Startup: Create database tables
    create_db_and_tables()
    yield
    # Shutdown: cleanup if needed


# Initialize FastAPI app
app = FastAPI(
    title="Team Governance API",
    description="Create teams, manage roles and admit new members",
    version="1.0.0",
    lifespan=lifespan
)

# Current-state streams shared by every request
app.state.hub = StateHub()


@app.exception_handler(TeamError)
async def team_error_handler(request: Request, exc: TeamError):
    body = {"error": exc.kind, "detail": exc.detail}
    if isinstance(exc, PartialFailureError):
        body.update({
            "status": "completed_with_warnings",
            "team_id": exc.team_id,
            "retry": exc.retry_path,
            "user_ids": exc.user_ids
        })
    return JSONResponse(status_code=exc.status_code, content=body)


@app.exception_handler(StoreError)
async def store_error_handler(request: Request, exc: StoreError):
    logger.error("Store failure on %s %s: %s", request.method, request.url.path, exc)
    return JSONResponse(
        status_code=503,
        content={"error": "store_unavailable", "detail": "The team store is unavailable, try again"}
    )


# Include routers
from app.routers import teams, join_requests

app.include_router(teams.router)
app.include_router(join_requests.router)


@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {"status": "healthy"}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run("main:app", host="0.0.0.0", port=8000, reload=True)
