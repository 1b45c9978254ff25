import logging
import os
from contextlib import asynccontextmanager
from datetime import datetime

from dotenv import load_dotenv

# Force load .env from the project root before the edge module reads its settings
env_path = os.path.join(os.path.dirname(os.path.dirname(os.path.abspath(__file__))), ".env")
load_dotenv(dotenv_path=env_path)

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import text
from starlette.exceptions import HTTPException as StarletteHTTPException

from schoolhub.edge import attendance_router, init_edge_module, router as edge_router
from schoolhub.edge.database import engine

# Configure Logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(message)s",
    handlers=[logging.StreamHandler()]
)
logger = logging.getLogger(__name__)

CORS_ALLOW_HEADERS = ["authorization", "x-client-info", "apikey", "content-type", "x-session-token"]


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup
    try:
        logger.info("Initializing edge module...")
        init_edge_module()
        logger.info("Edge module initialized.")
    except Exception:
        logger.exception("Startup edge module error")
        raise

    yield
    logger.info("Shutting down...")


app = FastAPI(title="SchoolHub Edge API", lifespan=lifespan)

origins = [origin.strip() for origin in os.getenv("CORS_ORIGINS", "*").split(",") if origin.strip()]

app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials="*" not in origins,
    allow_methods=["*"],
    allow_headers=CORS_ALLOW_HEADERS,
)


# Invitation checks answer with {valid, error} bodies, errors included
INVITATION_CHECK_PATH = "/functions/v1/validate-invitation-token"


def error_body(request: Request, message) -> dict:
    if request.url.path == INVITATION_CHECK_PATH:
        return {"valid": False, "error": message}
    return {"success": False, "message": message}


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException):
    return JSONResponse(
        status_code=exc.status_code,
        content=error_body(request, exc.detail),
        headers=getattr(exc, "headers", None),
    )


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    logger.warning(f"Rejected malformed body on {request.url.path}: {exc.errors()}")
    return JSONResponse(status_code=400, content=error_body(request, "Missing parameters"))


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    logger.exception(f"{request.url.path} error")
    return JSONResponse(status_code=500, content=error_body(request, "Server error"))


app.include_router(edge_router)
app.include_router(attendance_router)


# Health check endpoint for debugging connection issues
@app.get("/api/health")
def health_check():
    """Health check endpoint to verify the service is running and the database answers"""
    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        db_status = "connected"
    except Exception as e:
        db_status = f"error: {str(e)}"

    return {
        "status": "healthy",
        "message": "SchoolHub edge API is running",
        "database": db_status,
        "timestamp": datetime.now().isoformat()
    }


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("schoolhub.server:app", host="0.0.0.0", port=int(os.getenv("PORT", "8000")))
