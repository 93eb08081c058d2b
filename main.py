import os

import uvicorn
from fastapi import Depends
from fastapi import FastAPI
from fastapi import Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from garak_service.scan_graph.observability import configure_langsmith
configure_langsmith()

from garak_service.scan_graph.logger import scan_logger
from models import HealthResponse
from models import ValidationErrorResponse
from scan_router import ScanService
from scan_router import get_scan_service
from scan_router import scan_router
from scan_router import utc_timestamp

SERVICE_NAME = "garak-api-service"
SERVICE_VERSION = "1.0.0"

app = FastAPI(
    title="Garak API Service",
    description="Runs garak security scans against REST model endpoints",
    version=SERVICE_VERSION,
)

# CORS configuration
allowed_origins = [origin.strip() for origin in os.getenv("CORS_ALLOW_ORIGINS", "*").split(",") if origin.strip()]
app.add_middleware(
    CORSMiddleware,
    allow_origins=allowed_origins,
    allow_credentials="*" not in allowed_origins,
    allow_methods=["*"],
    allow_headers=["*"],
)


def _format_validation_error(error: dict) -> str:
    location = ".".join(str(part) for part in error.get("loc", ()) if part != "body")
    message = str(error.get("msg", "invalid value")).removeprefix("Value error, ")
    return f"{location}: {message}" if location else message


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    details = [_format_validation_error(error) for error in exc.errors()]
    return JSONResponse(status_code=400, content=ValidationErrorResponse(details=details).model_dump())


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    scan_logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(status_code=500, content={"success": False, "error": "Internal server error"})


@app.get("/api/health", response_model=HealthResponse)
async def health_check(service: ScanService = Depends(get_scan_service)):
    """Liveness probe."""
    return HealthResponse(
        status="healthy",
        service=SERVICE_NAME,
        timestamp=utc_timestamp(),
        version=SERVICE_VERSION,
        active_scans=await service.active_scan_count(),
    )


app.include_router(scan_router, prefix="/api")

if __name__ == "__main__":
    uvicorn.run(
        "main:app",
        host=os.getenv("HOST", "0.0.0.0"),
        port=int(os.getenv("PORT", "3000")),
    )
