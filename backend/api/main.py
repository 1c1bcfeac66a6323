"""
FastAPI application entry point.

Run with: uvicorn api.main:app --reload
"""
import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from pathlib import Path
from dotenv import load_dotenv

# Load environment variables from backend/.env (optional) before other imports that read env
env_path = Path(__file__).resolve().parent.parent / ".env"
load_dotenv(env_path)

from api.dependencies import get_store
from api.routes import map as map_routes, places
from settings import settings

logging.basicConfig(
    level=settings.LOG_LEVEL,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


# Create app
app = FastAPI(
    title="Places Map API",
    description="Collect, annotate and export places picked on a map",
    version="0.1.0",
)

# CORS middleware for frontend
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Configure properly for production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(places.router, tags=["places"])
app.include_router(map_routes.router, prefix="/map", tags=["map"])


@app.on_event("startup")
def startup_event():
    """Create tables and load the persisted state."""
    store = get_store()
    logger.info("Places Map API ready with %d places", len(store.places))


@app.get("/")
async def root():
    """Health check endpoint."""
    return {"status": "ok", "service": "Places Map API"}


@app.get("/health")
async def health():
    """Health check endpoint."""
    return {"status": "healthy"}
