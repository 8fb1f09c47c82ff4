from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException
import logging

from .dependencies import http_error
from .routes import get_router_configs
from .services.exceptions import TransferError
from clickhouse_transfer.backend.config import get_settings

# Get settings
settings = get_settings()

# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

app = FastAPI(title="ClickHouse Transfer API")

# Configure CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers using centralized configuration
router_configs = get_router_configs()
for config in router_configs.values():
    app.include_router(
        config["router"],
        prefix=config["prefix"],
        tags=config["tags"],
    )


@app.exception_handler(HTTPException)
async def http_exception_handler(request, exc):
    """
    Return errors as {"error": message}.
    """
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": exc.detail},
        headers=getattr(exc, "headers", None),
    )


@app.exception_handler(TransferError)
async def transfer_exception_handler(request, exc):
    """
    Map service errors that escape a route to their HTTP status.
    """
    error = http_error(exc)
    return JSONResponse(status_code=error.status_code, content={"error": error.detail})


@app.get("/health")
async def health_check():
    """
    Health check endpoint
    """
    return {
        "status": "healthy",
        "environment": settings.ENVIRONMENT,
        "clickhouse": f"{settings.CLICKHOUSE_HOST}:{settings.CLICKHOUSE_PORT}",
    }


def run():
    """Run the API with uvicorn."""
    import uvicorn

    logger.info(f"Starting API on {settings.API_HOST}:{settings.API_PORT}")
    uvicorn.run(
        "clickhouse_transfer.backend.main:app",
        host=settings.API_HOST,
        port=settings.API_PORT,
        reload=settings.DEBUG,
    )


if __name__ == "__main__":
    run()
