from __future__ import annotations

import asyncio
import contextlib
import json
import logging
from contextlib import asynccontextmanager
from typing import Any

from dotenv import load_dotenv
from fastapi import APIRouter, Depends, FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from fastapi.staticfiles import StaticFiles
from starlette.datastructures import UploadFile

from optimizer.config import Settings, configure_logging, load_settings, merge_settings
from optimizer.errors import AuthenticationError, OptimizerError, ValidationError
from optimizer.pipeline.options import validate_options
from optimizer.pipeline.validator import validate_steps
from optimizer.schemas import HealthResponse, OptimizeResponse, PipelineSpec, Status, StorageStatsPayload
from optimizer.services.optimizer import OptimizerService, Outcome

load_dotenv()

logger = logging.getLogger(__name__)

SWEEP_INTERVAL_S = 24 * 60 * 60
_INPUT_FIELDS = {"url", "image", "apiKey", "pipeline"}


async def _sweep_periodically(service: OptimizerService, interval_s: float) -> None:
    while True:
        await asyncio.sleep(interval_s)
        logger.info("running scheduled cleanup of old files")
        try:
            await asyncio.to_thread(service.storage.sweep_expired)
        except OSError:
            logger.exception("scheduled cleanup failed")


def _service(request: Request) -> OptimizerService:
    return request.app.state.service


def require_api_key(request: Request) -> None:
    server = _service(request).settings.server
    if server.is_development and server.skip_auth:
        return
    api_key = request.headers.get("x-api-key") or request.query_params.get("apiKey")
    if not api_key or api_key != server.api_key:
        raise AuthenticationError("Invalid API key. Please provide a valid API key.")


async def _read_body(request: Request) -> tuple[dict[str, Any], bytes | None]:
    """Split a JSON or form request into plain fields and an optional upload."""
    content_type = request.headers.get("content-type", "")
    if content_type.startswith("application/json"):
        try:
            body = await request.json()
        except json.JSONDecodeError as error:
            raise ValidationError(f"Invalid JSON body: {error.msg}") from error
        if not isinstance(body, dict):
            raise ValidationError("Request body must be a JSON object")
        return body, None

    form = await request.form()
    fields: dict[str, Any] = {}
    upload: bytes | None = None
    for key, value in form.multi_items():
        if isinstance(value, UploadFile):
            if key == "image":
                upload = await value.read()
            continue
        fields[key] = value
    return fields, upload


def _response(request: Request, outcome: Outcome, message: str, original_url: str | None) -> OptimizeResponse:
    result = outcome.result
    return OptimizeResponse(
        status=Status(code=2, message=message),
        original_url=original_url,
        original_size=outcome.asset.byte_size,
        processed_size=result.processed_size,
        format=result.format,
        width=result.width,
        height=result.height,
        compression_ratio=outcome.compression_ratio,
        download_url=f"{str(request.base_url).rstrip('/')}{outcome.artifact.url}",
        base64=outcome.data_uri,
    )


router = APIRouter(dependencies=[Depends(require_api_key)])


@router.get("/optimize")
async def optimize_from_url(
    request: Request,
    url: str | None = None,
    maxWidth: int | None = None,
    compression: str | None = None,
) -> Response:
    service = _service(request)
    if not url:
        raise ValidationError("URL parameter is required", field="url")
    image_config = service.settings.image
    options: dict[str, Any] = {
        "maxWidth": maxWidth or image_config.default_max_width,
        "compressionLevel": compression or image_config.default_compression,
        "targetFormat": image_config.default_format,
    }
    validate_options(options, image_config)

    asset = await service.load(url=url)
    outcome = await service.optimize(asset, options)
    return Response(
        content=outcome.result.encoded_bytes,
        media_type=image_config.mime_type(outcome.result.format),
    )


@router.post("/optimize")
async def optimize(request: Request) -> JSONResponse:
    service = _service(request)
    fields, upload = await _read_body(request)
    url = fields.get("url") or None
    if not url and not upload and not fields.get("image"):
        raise ValidationError("Either url parameter or image file upload is required", field="image")

    options = {key: value for key, value in fields.items() if key not in _INPUT_FIELDS}
    validate_options(options, service.settings.image)

    asset = await service.load(url=url, data=upload, encoded=fields.get("image"))
    outcome = await service.optimize(asset, options)
    payload = _response(request, outcome, "Image processed successfully", url or "uploaded-file")
    return JSONResponse(payload.model_dump(by_alias=True, exclude_none=True))


@router.post("/pipeline")
async def pipeline(request: Request) -> JSONResponse:
    service = _service(request)
    fields, upload = await _read_body(request)

    raw_pipeline = fields.get("pipeline")
    if not raw_pipeline:
        raise ValidationError("Pipeline configuration is required", field="pipeline")
    try:
        if isinstance(raw_pipeline, str):
            raw_pipeline = json.loads(raw_pipeline)
        pipeline_spec = PipelineSpec.model_validate(raw_pipeline)
    except (json.JSONDecodeError, ValueError) as error:
        raise ValidationError(
            f"Invalid pipeline configuration: {error}", field="pipeline"
        ) from error

    # steps are checked before anything is fetched or decoded
    validate_steps(pipeline_spec.steps, service.settings.image.formats)

    url = fields.get("url") or None
    asset = await service.load(url=url, data=upload, encoded=fields.get("image"))
    outcome = await service.run_pipeline(asset, pipeline_spec.steps)
    payload = _response(request, outcome, "Pipeline executed successfully", url)
    return JSONResponse(payload.model_dump(by_alias=True, exclude_none=True))


def create_app(
    settings: Settings | None = None,
    overrides: dict[str, Any] | None = None,
) -> FastAPI:
    """Build the app from ``settings`` (or the environment).

    ``overrides`` is a partial, nested settings dict merged on top, e.g.
    ``{"storage": {"path": "/tmp/out"}}``.
    """
    settings = settings or load_settings()
    if overrides:
        settings = merge_settings(settings, overrides)
    service = OptimizerService(settings)

    @asynccontextmanager
    async def lifespan(_: FastAPI):
        configure_logging(settings.logging.level)
        await asyncio.to_thread(service.storage.init)
        sweeper = asyncio.create_task(_sweep_periodically(service, SWEEP_INTERVAL_S))
        logger.info("image optimizer ready, storage at %s", service.storage.root)
        try:
            yield
        finally:
            sweeper.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await sweeper

    app = FastAPI(
        title="image optimizer",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.state.service = service

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(OptimizerError)
    async def handle_optimizer_error(request: Request, error: OptimizerError) -> JSONResponse:
        if error.status_code >= 500:
            logger.error("request failed: %s", error.message)
        else:
            logger.info("request rejected (%s): %s", error.code, error.message)
        return JSONResponse(
            status_code=error.status_code,
            content=error.to_payload(include_details=settings.server.is_development),
        )

    @app.get("/api/health", response_model=HealthResponse)
    async def health() -> HealthResponse:
        stats = await asyncio.to_thread(service.storage.stats)
        return HealthResponse(
            storage=StorageStatsPayload(
                file_count=stats.file_count,
                total_size=stats.total_size,
                total_size_mb=stats.total_size_mb,
            )
        )

    app.include_router(router)
    app.mount(
        settings.storage.public_prefix,
        StaticFiles(directory=str(service.storage.root), check_dir=False),
        name="downloads",
    )
    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    server = load_settings().server
    uvicorn.run("optimizer.main:app", host=server.host, port=server.port, reload=True)
