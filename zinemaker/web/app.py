from __future__ import annotations

import asyncio
import logging
import re
import shutil
import time
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any, AsyncIterator, Callable, cast
from uuid import uuid4

from fastapi import FastAPI, File, Form, HTTPException, Request, UploadFile
from fastapi.responses import FileResponse, HTMLResponse, JSONResponse, Response
from fastapi.templating import Jinja2Templates

from zinemaker.compose.export import compose_front_sheet, export_filename
from zinemaker.constants import (
    DEFAULT_ARTIFACT_DIR,
    DEFAULT_ARTIFACT_RETENTION_SECONDS,
    MAX_SOURCE_BYTES,
    PAPER_LABELS,
    PAPER_SIZES,
    PREVIEW_PIXELS_PER_MM,
)
from zinemaker.errors import InputRejected
from zinemaker.imposition.core import MAX_SHEETS, MINI_ZINE_SIGNATURE
from zinemaker.log import log_event
from zinemaker.paper import LayoutSettings, Orientation
from zinemaker.rendering.orchestrator import Booklet, RenderOrchestrator, SourceDocument, check_source_size
from zinemaker.session import (
    ChangeSettings,
    CloseDocument,
    CommandFailed,
    DocumentReady,
    ExportReady,
    PrintSurfaceReady,
    RequestExport,
    RequestPrintSurface,
    SettingsChanged,
    SubmitDocument,
    ZineSession,
)
from zinemaker.settings import PreferenceStore, SettingsState

_REQUEST_ID_PATTERN = re.compile(r"^[a-f0-9]{32}$")
_EXPIRED_ARTIFACT_MESSAGE = "This download link has expired after cleanup. Regenerate the zine to create a new link."
_LOGGER = logging.getLogger("zinemaker.web")
_PREVIEW_ACTION = "preview"
_PRINT_ACTION = "print"
_EXPORT_ACTION = "export"
_SUPPORTED_ACTIONS = {_PREVIEW_ACTION, _PRINT_ACTION, _EXPORT_ACTION}
_MEDIA_TYPES = {".pdf": "application/pdf", ".png": "image/png"}
_TEMPLATES_DIR = Path(__file__).resolve().parent.parent / "templates"


def _cleanup_stale_artifacts(
    artifact_dir: Path,
    *,
    retention_seconds: int,
    now: float | None = None,
) -> int:
    if retention_seconds < 0:
        return 0

    cutoff = (time.time() if now is None else now) - retention_seconds
    removed = 0
    for child in artifact_dir.iterdir():
        try:
            is_stale = child.stat().st_mtime < cutoff
        except FileNotFoundError:
            continue

        if not is_stale:
            continue

        if child.is_dir():
            shutil.rmtree(child, ignore_errors=True)
        else:
            child.unlink(missing_ok=True)
        removed += 1

    return removed


def _validated_filename(filename: str) -> str:
    if "\\" in filename:
        raise HTTPException(status_code=400, detail="Invalid filename")

    safe_name = Path(filename).name
    if safe_name != filename or safe_name in {"", ".", ".."}:
        raise HTTPException(status_code=400, detail="Invalid filename")
    return safe_name


def _resolve_request_artifact_path(artifact_dir: Path, request_id: str, filename: str) -> Path:
    if _REQUEST_ID_PATTERN.fullmatch(request_id) is None:
        log_event(_LOGGER, logging.WARNING, "download.request.invalid_request_id", request_id=request_id, filename=filename)
        raise HTTPException(status_code=400, detail="Invalid request id")

    safe_name = _validated_filename(filename)
    request_artifact_dir = artifact_dir / request_id
    if not request_artifact_dir.is_dir():
        log_event(_LOGGER, logging.WARNING, "download.request.expired", request_id=request_id, filename=safe_name)
        raise HTTPException(status_code=410, detail=_EXPIRED_ARTIFACT_MESSAGE)

    file_path = request_artifact_dir / safe_name
    if not file_path.is_file() or file_path.suffix.lower() not in _MEDIA_TYPES:
        log_event(_LOGGER, logging.WARNING, "download.request.missing_file", request_id=request_id, filename=safe_name)
        raise HTTPException(status_code=404, detail="File not found")

    return file_path


def _write_sheet_previews(booklet: Booklet, settings: LayoutSettings, request_dir: Path) -> list[str]:
    size = settings.pixel_size(PREVIEW_PIXELS_PER_MM)
    names: list[str] = []
    request_dir.mkdir(parents=True, exist_ok=True)
    for sheet in booklet.layout.sheets:
        name = f"preview_sheet{sheet.index + 1}.png"
        image = compose_front_sheet(booklet, sheet, size)
        try:
            image.save(request_dir / name, format="PNG")
        finally:
            image.close()
        names.append(name)
    return names


def create_app(
    artifact_dir: Path | None = None,
    artifact_retention_seconds: int = DEFAULT_ARTIFACT_RETENTION_SECONDS,
    settings_path: Path | None = None,
    orchestrator_factory: Callable[[], RenderOrchestrator] = RenderOrchestrator,
    max_upload_bytes: int = MAX_SOURCE_BYTES,
) -> FastAPI:
    orchestrator = orchestrator_factory()

    @asynccontextmanager
    async def lifespan(_: FastAPI) -> AsyncIterator[None]:
        yield
        orchestrator.shutdown()

    app = FastAPI(title="Zine Maker", version="0.1.0", lifespan=lifespan)
    templates = Jinja2Templates(directory=str(_TEMPLATES_DIR))

    target_artifact_dir = artifact_dir or (Path.cwd() / DEFAULT_ARTIFACT_DIR)
    target_artifact_dir.mkdir(parents=True, exist_ok=True)
    app.state.artifact_dir = target_artifact_dir
    app.state.artifact_retention_seconds = artifact_retention_seconds
    app.state.templates = templates
    app.state.settings = SettingsState(PreferenceStore(settings_path))
    app.state.orchestrator = orchestrator
    app.state.max_upload_bytes = max_upload_bytes
    app.state.pipeline_lock = asyncio.Lock()

    def render_index(
        request: Request,
        *,
        result: dict[str, Any] | None = None,
        status_code: int = 200,
    ) -> HTMLResponse:
        return templates.TemplateResponse(
            request=request,
            name="index.html",
            context={
                "result": result,
                "paper_sizes": [(name, PAPER_LABELS[name]) for name in sorted(PAPER_SIZES)],
                "orientations": [item.value for item in Orientation],
                "form": app.state.settings.snapshot().as_dict(),
                "max_pages": MAX_SHEETS * MINI_ZINE_SIGNATURE.capacity,
            },
            status_code=status_code,
        )

    def render_error(request: Request, message: str, status_code: int) -> HTMLResponse:
        return render_index(request, result={"status": "error", "message": message}, status_code=status_code)

    @app.get("/health")
    def health() -> dict[str, str]:
        return {"status": "ok"}

    @app.get("/", response_class=HTMLResponse)
    def index(request: Request) -> HTMLResponse:
        return render_index(request)

    @app.post("/settings")
    async def update_settings(
        paper_size: str = Form(""),
        orientation: str = Form(""),
    ) -> JSONResponse:
        session = ZineSession(orchestrator=app.state.orchestrator, settings=app.state.settings)
        event = await session.handle(
            ChangeSettings(paper_size=paper_size.strip() or None, orientation=orientation.strip() or None)
        )
        if isinstance(event, CommandFailed):
            log_event(_LOGGER, logging.WARNING, "settings.request.failed", error=event.error.message)
            return JSONResponse({"detail": event.error.message}, status_code=400)

        return JSONResponse(cast(SettingsChanged, event).settings.as_dict())

    @app.post("/zine", response_class=HTMLResponse)
    async def make_zine(
        request: Request,
        file: UploadFile | None = File(default=None),
        action: str = Form(_PREVIEW_ACTION),
        paper_size: str = Form(""),
        orientation: str = Form(""),
    ) -> HTMLResponse:
        job_id = uuid4().hex
        log_event(
            _LOGGER,
            logging.INFO,
            "zine.request.received",
            job_id=job_id,
            action=action,
            paper_size=paper_size,
            orientation=orientation,
            has_upload=file is not None and bool(file.filename),
        )
        normalized_action = action.strip().lower()
        if normalized_action not in _SUPPORTED_ACTIONS:
            log_event(_LOGGER, logging.WARNING, "zine.request.invalid_action", job_id=job_id, action=action)
            return render_error(request, f"Invalid action '{action}'.", 400)

        if file is None or not file.filename:
            log_event(_LOGGER, logging.WARNING, "zine.request.upload_missing", job_id=job_id)
            return render_error(request, "Upload a PDF file to continue.", 400)

        session = ZineSession(orchestrator=app.state.orchestrator, settings=app.state.settings)
        # One snapshot for every artifact built from this upload, taken before any await on the render.
        snapshot = app.state.settings.snapshot()
        if paper_size.strip() or orientation.strip():
            settings_event = await session.handle(
                ChangeSettings(paper_size=paper_size.strip() or None, orientation=orientation.strip() or None)
            )
            if isinstance(settings_event, CommandFailed):
                return render_error(request, settings_event.error.message, 400)
            snapshot = cast(SettingsChanged, settings_event).settings

        try:
            check_source_size(file.size or 0, max_bytes=app.state.max_upload_bytes)
        except InputRejected as exc:
            log_event(_LOGGER, logging.WARNING, "zine.request.upload_too_large", job_id=job_id, size=file.size)
            return render_error(request, exc.message, 400)

        payload = await file.read()
        source = SourceDocument(payload=payload, filename=Path(file.filename).name, media_type=file.content_type)

        async with app.state.pipeline_lock:
            booklet: Booklet | None = None
            try:
                loaded = await session.handle(SubmitDocument(source))
                if isinstance(loaded, CommandFailed):
                    log_event(
                        _LOGGER,
                        logging.WARNING,
                        "zine.request.failed",
                        job_id=job_id,
                        source_name=source.filename,
                        error=loaded.error.message,
                    )
                    return render_error(request, loaded.error.message, 400)

                ready = cast(DocumentReady, loaded)
                booklet = ready.booklet
                result: dict[str, Any] = {
                    "status": "success",
                    "mode": normalized_action,
                    "message": ready.status_message,
                    "warnings": list(ready.warnings),
                    "sheets": len(booklet.layout.sheets),
                    "dropped_pages": booklet.layout.dropped_count,
                }

                if normalized_action == _PRINT_ACTION:
                    printed = await session.handle(RequestPrintSurface(settings=snapshot))
                    if isinstance(printed, CommandFailed):
                        return render_error(request, printed.error.message, 500)
                    log_event(_LOGGER, logging.INFO, "zine.print.succeeded", job_id=job_id, source_name=source.filename)
                    return HTMLResponse(cast(PrintSurfaceReady, printed).surface.html)

                removed = _cleanup_stale_artifacts(
                    app.state.artifact_dir,
                    retention_seconds=app.state.artifact_retention_seconds,
                )
                request_id = uuid4().hex
                request_dir = app.state.artifact_dir / request_id

                if normalized_action == _EXPORT_ACTION:
                    output_name = export_filename()
                    exported = await session.handle(
                        RequestExport(output_path=request_dir / output_name, settings=snapshot)
                    )
                    if isinstance(exported, CommandFailed):
                        return render_error(request, exported.error.message, 500)
                    result.update(
                        {
                            "download_url": f"/download/{request_id}/{output_name}",
                            "output_filename": output_name,
                            "output_pages": cast(ExportReady, exported).artifact.page_count,
                        }
                    )
                else:
                    names = await app.state.orchestrator.compose(booklet, _write_sheet_previews, snapshot, request_dir)
                    result["preview_urls"] = [f"/download/{request_id}/{name}" for name in names]
            except Exception:
                _LOGGER.exception(
                    "zine.request.unexpected_failure",
                    extra={
                        "event_name": "zine.request.unexpected_failure",
                        "event_fields": {"job_id": job_id, "source_name": source.filename},
                    },
                )
                return render_error(request, "Zine generation failed unexpectedly. Retry and check server logs.", 500)
            finally:
                if booklet is not None:
                    await session.handle(CloseDocument(booklet))

        log_event(
            _LOGGER,
            logging.INFO,
            "zine.request.succeeded",
            job_id=job_id,
            request_id=request_id,
            action=normalized_action,
            source_name=source.filename,
            stale_artifacts_removed=removed,
        )
        return render_index(request, result=result)

    @app.get("/download/{request_id}/{filename:path}")
    def download_request_artifact(request: Request, request_id: str, filename: str) -> Response:
        try:
            file_path = _resolve_request_artifact_path(app.state.artifact_dir, request_id, filename)
        except HTTPException as exc:
            if exc.status_code == 410 and "text/html" in request.headers.get("accept", ""):
                return render_error(request, _EXPIRED_ARTIFACT_MESSAGE, 410)
            raise

        return FileResponse(
            path=file_path,
            media_type=_MEDIA_TYPES[file_path.suffix.lower()],
            filename=file_path.name,
        )

    return app


app = create_app()
