from fastapi import FastAPI
from .config import config
from .db import init_db
from .api.endpoints import router as api_router
from .providers.map import create_map_provider
from .providers.weather import create_weather_provider

# Create FastAPI app
app = FastAPI(
    title="DriveScore",
    description="Trip safety scoring and rolling driver scores from phone telemetry",
    version="1.0.0"
)

# Providers are resolved once per process and shared by every request
provider_settings = config.get_provider_settings()
app.state.map_provider = create_map_provider(provider_settings)
app.state.weather_provider = create_weather_provider(provider_settings)

# Include API routes
app.include_router(api_router, prefix="/api")

@app.on_event("startup")
async def startup():
    """Initialize database on startup."""
    init_db()

@app.get("/")
async def root():
    """Root endpoint."""
    return {"message": "DriveScore", "docs": "/docs"}

@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {"status": "healthy"}
