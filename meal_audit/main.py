# meal_audit/main.py
import logging
import time
import uuid
from functools import lru_cache

from fastapi import Depends, FastAPI, File, Form, HTTPException, Request, UploadFile
from fastapi.responses import JSONResponse

from meal_audit.auth import verify_api_key
from meal_audit.cache import ResultCache
from meal_audit.config import Settings, get_settings
from meal_audit.errors import AnalysisError
from meal_audit.logging_setup import request_id_ctx, setup_logging
from meal_audit.openrouter_client import build_inference_client
from meal_audit.orchestrator import AnalysisOrchestrator
from meal_audit.profile import build_profile
from meal_audit.schemas import (
    DEFAULT_LANGUAGE,
    AnalysisResult,
    ErrorResponse,
    UserProfile,
    UserProfileInput,
)
from meal_audit.storage import FileStore, InMemoryStore, Store

setup_logging(get_settings().log_level)
logger = logging.getLogger(__name__)

app = FastAPI(title="Meal Audit")

ALLOWED_CONTENT_TYPES = {"image/jpeg", "image/png", "image/jpg", "image/webp"}


def build_store(settings: Settings) -> Store:
    if settings.cache_backend == "memory":
        return InMemoryStore(quota_bytes=settings.cache_quota_bytes)
    return FileStore(settings.cache_dir, quota_bytes=settings.cache_quota_bytes)


@lru_cache(maxsize=1)
def get_orchestrator() -> AnalysisOrchestrator:
    settings = get_settings()
    cache = ResultCache(build_store(settings), namespace=settings.cache_namespace)
    return AnalysisOrchestrator(cache, client_factory=lambda: build_inference_client(settings))


@app.middleware("http")
async def request_context_middleware(request: Request, call_next):
    """Tag logs with a request id; the completion line carries the cache outcome or error kind."""
    request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())[:8]
    token = request_id_ctx.set(request_id)

    try:
        start_time = time.time()
        client_ip = request.client.host if request.client else "unknown"

        logger.info(
            "Request started",
            extra={
                "path": str(request.url.path),
                "method": request.method,
                "client_ip": client_ip,
            },
        )

        response = await call_next(request)

        duration_ms = round((time.time() - start_time) * 1000, 2)

        extra = {
            "path": str(request.url.path),
            "method": request.method,
            "status": response.status_code,
            "duration_ms": duration_ms,
            "client_ip": client_ip,
        }
        if "X-Cache" in response.headers:
            extra["cache"] = response.headers["X-Cache"]
        if "X-Error-Kind" in response.headers:
            extra["kind"] = response.headers["X-Error-Kind"]

        logger.info("Request completed", extra=extra)

        response.headers["X-Request-ID"] = request_id
        return response
    finally:
        request_id_ctx.reset(token)


@app.exception_handler(AnalysisError)
async def analysis_error_handler(request: Request, exc: AnalysisError):
    payload = ErrorResponse(**exc.to_dict(), request_id=request_id_ctx.get() or None)
    return JSONResponse(
        status_code=exc.status_code,
        content=payload.model_dump(),
        headers={"X-Error-Kind": exc.kind.value},
    )


@app.get("/health")
async def health():
    return {"status": "ok"}


@app.post("/api/v1/ai/analyze-meal", response_model=AnalysisResult)
async def analyze_meal(
    image: UploadFile = File(..., description="Meal photo (JPEG/PNG/WebP)"),
    language: str = Form(DEFAULT_LANGUAGE, description="Display language (en/bn/hi/as)"),
    api_key: str = Depends(verify_api_key),
    settings: Settings = Depends(get_settings),
    orchestrator: AnalysisOrchestrator = Depends(get_orchestrator),
):
    if image.content_type not in ALLOWED_CONTENT_TYPES:
        logger.warning(
            "Unsupported file type",
            extra={"path": "/api/v1/ai/analyze-meal", "method": "POST"},
        )
        raise HTTPException(
            status_code=400,
            detail=f"Unsupported file type: {image.content_type}. Only JPEG/PNG/WebP are allowed.",
        )

    content = await image.read()
    file_size = len(content)

    if file_size == 0:
        raise HTTPException(status_code=400, detail="Empty file.")

    if file_size > settings.max_image_size_bytes:
        raise HTTPException(
            status_code=413,
            detail=f"File too large. Max allowed size is {settings.max_image_size_bytes} bytes "
            f"({settings.max_image_size_bytes // (1024 * 1024)} MB).",
        )

    result, from_cache = await orchestrator.analyze_with_status(
        content,
        display_language=language,
        mime_type=image.content_type or "image/jpeg",
    )

    return JSONResponse(
        content=result.to_wire(),
        headers={"X-Cache": "HIT" if from_cache else "MISS"},
    )


@app.post("/api/v1/profile/tdee", response_model=UserProfile)
async def profile_tdee(profile: UserProfileInput):
    return build_profile(profile)


@app.delete("/api/v1/cache")
async def clear_cache(
    api_key: str = Depends(verify_api_key),
    orchestrator: AnalysisOrchestrator = Depends(get_orchestrator),
):
    evicted = orchestrator.cache.evict_all()
    return {"evicted": evicted}


@app.exception_handler(Exception)
async def unexpected_error_handler(request: Request, exc: Exception):
    logger.error("Unexpected error: %s", str(exc), exc_info=exc)
    return JSONResponse(status_code=500, content={"detail": "Internal server error"})
