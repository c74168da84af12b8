from __future__ import annotations

from fastapi import FastAPI, HTTPException
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware

from offersync import __version__
from offersync.api.routes import bulk_edit
from offersync.config import get_settings
from offersync.core.exceptions import global_exception_handler, http_exception_handler, request_validation_exception_handler
from offersync.core.json import DecimalJSONResponse
from offersync.core.lifespan import lifespan
from offersync.core.middleware import RequestIdMiddleware

settings = get_settings()

app = FastAPI(title="offersync", version=__version__, default_response_class=DecimalJSONResponse, lifespan=lifespan)

app.add_middleware(CORSMiddleware, allow_origins=settings.allowed_origins, allow_credentials=True, allow_methods=["GET", "POST", "OPTIONS"], allow_headers=["content-type", "authorization", "x-request-id"], expose_headers=["x-request-id"])

app.add_exception_handler(Exception, global_exception_handler)
app.add_exception_handler(HTTPException, http_exception_handler)
app.add_exception_handler(RequestValidationError, request_validation_exception_handler)

app.add_middleware(RequestIdMiddleware)


@app.get("/health", include_in_schema=False)
async def health_check() -> dict[str, str]:
  """Return a simple health status."""
  return {"status": "ok"}


app.include_router(bulk_edit.router, prefix="/v1/bulk-edit", tags=["bulk-edit"])
