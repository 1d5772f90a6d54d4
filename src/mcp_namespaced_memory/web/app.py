# Copyright 2024 Heinrich Krupp
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

"""
FastAPI application for the HTTP interface.

The lifespan opens the shared storage backends and hands them to the
dependency layer; service errors are mapped to status codes here so the
routers can let them propagate.
"""

import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone

import uvicorn
from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from ..config import SERVICE_NAME, SERVICE_VERSION, settings
from ..errors import DownstreamUnavailableError, InvalidInputError, NotFoundError
from ..services.session_context import SessionContext
from ..shared_storage import close_shared_storage, get_shared_storage
from .api import memories, search
from .dependencies import set_storage

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    backends = await get_shared_storage()
    set_storage(backends)
    try:
        purged = await SessionContext.purge_expired(backends.record_store, settings.session)
        if purged:
            logger.info(f"Purged {purged} expired sessions")
    except Exception as e:
        logger.warning(f"Session purge failed (non-fatal): {e}")

    try:
        yield
    finally:
        set_storage(None)
        await close_shared_storage()


app = FastAPI(title=SERVICE_NAME, version=SERVICE_VERSION, lifespan=lifespan)


@app.exception_handler(NotFoundError)
async def not_found_handler(request: Request, exc: NotFoundError):
    return JSONResponse(status_code=404, content={"success": False, "detail": str(exc)})


@app.exception_handler(InvalidInputError)
async def invalid_input_handler(request: Request, exc: InvalidInputError):
    return JSONResponse(status_code=400, content={"success": False, "detail": str(exc)})


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    return JSONResponse(status_code=400, content={"success": False, "detail": jsonable_encoder(exc.errors())})


@app.exception_handler(DownstreamUnavailableError)
async def unavailable_handler(request: Request, exc: DownstreamUnavailableError):
    logger.error(f"Downstream unavailable on {request.url.path}: {exc}")
    return JSONResponse(status_code=503, content={"success": False, "detail": str(exc)})


@app.get("/health", tags=["health"])
async def health():
    return {
        "status": "ok",
        "version": SERVICE_VERSION,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


app.include_router(memories.router, prefix="/api")
app.include_router(search.router, prefix="/api")


def main():
    """Run the HTTP interface with uvicorn."""
    logging.basicConfig(level=logging.INFO)
    logger.info(f"Starting {SERVICE_NAME} HTTP interface on {settings.http.host}:{settings.http.port}")
    uvicorn.run(app, host=settings.http.host, port=settings.http.port)


if __name__ == "__main__":
    main()
