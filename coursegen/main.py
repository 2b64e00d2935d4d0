from __future__ import annotations

from fastapi import FastAPI, HTTPException
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware

from coursegen.api.routes import generation, tasks
from coursegen.config import get_settings
from coursegen.core.exceptions import course_generation_exception_handler, global_exception_handler, http_exception_handler, request_validation_exception_handler
from coursegen.core.lifespan import lifespan
from coursegen.core.middleware import RequestLoggingMiddleware
from coursegen.errors import CourseGenerationError

settings = get_settings()

app = FastAPI(title="coursegen", lifespan=lifespan, docs_url=None, redoc_url=None, openapi_url=None if settings.environment == "production" else "/openapi.json")

app.add_middleware(
  CORSMiddleware,
  allow_origins=list(settings.allowed_origins),
  allow_credentials=True,
  allow_methods=["GET", "POST", "OPTIONS"],
  allow_headers=["content-type", "authorization", "x-request-id"],
  expose_headers=["content-length", "x-request-id"],
)

app.add_exception_handler(Exception, global_exception_handler)
app.add_exception_handler(HTTPException, http_exception_handler)
app.add_exception_handler(CourseGenerationError, course_generation_exception_handler)
app.add_exception_handler(RequestValidationError, request_validation_exception_handler)

app.add_middleware(RequestLoggingMiddleware)


@app.get("/health", include_in_schema=False)
async def health_check() -> dict[str, str]:
  """Return a simple health status."""
  return {"status": "ok", "version": "0.1.0"}


app.include_router(generation.router, prefix="/v1/generation", tags=["generation"])
app.include_router(tasks.router, prefix="/internal", tags=["tasks"])
