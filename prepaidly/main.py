"""FastAPI application for Prepaidly."""
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from datetime import datetime
import logging

from prepaidly import __version__
from prepaidly.config import config
from prepaidly.database import init_db
from prepaidly.dependencies import token_refresh_scheduler
from prepaidly.exceptions import PrepaidlyError
from prepaidly.routes import auth, journals, schedules, settings, sync, users, xero

# Configure logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

# Initialize FastAPI app
app = FastAPI(
    title="Prepaidly",
    description="Prepaid expense and unearned revenue amortization for Xero",
    version=__version__,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[config.FRONTEND_URL],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(auth.router)
app.include_router(schedules.router)
app.include_router(journals.router)
app.include_router(settings.router)
app.include_router(xero.router)
app.include_router(sync.router)
app.include_router(users.router)


@app.exception_handler(PrepaidlyError)
async def prepaidly_error_handler(request: Request, exc: PrepaidlyError):
    """Translate service errors into ``{"error": message}`` with the error's status."""
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
    else:
        logger.info(f"{request.method} {request.url.path} rejected ({exc.status_code}): {exc.message}")
    return JSONResponse(status_code=exc.status_code, content={"error": exc.message})


@app.on_event("startup")
async def startup_event():
    """Create tables and start the token refresh scheduler."""
    logger.info(f"Starting {config.SERVICE_NAME}...")
    init_db()
    if config.ENABLE_TOKEN_REFRESH_SCHEDULER:
        token_refresh_scheduler.start()
    else:
        logger.info("Token refresh scheduler disabled by configuration")


@app.on_event("shutdown")
async def shutdown_event():
    token_refresh_scheduler.shutdown()


@app.get("/api/health")
async def health_check():
    """Health check endpoint for load balancers."""
    return JSONResponse({
        "status": "UP",
        "service": config.SERVICE_NAME,
        "version": __version__,
        "timestamp": datetime.utcnow().isoformat(),
    })


if __name__ == "__main__":
    import sys
    import uvicorn

    try:
        config.validate()
    except ValueError as e:
        logger.error(f"Configuration error: {e}")
        sys.exit(1)

    logger.info(f"Starting {config.SERVICE_NAME} on {config.HOST}:{config.PORT}")
    uvicorn.run(app, host=config.HOST, port=config.PORT)
