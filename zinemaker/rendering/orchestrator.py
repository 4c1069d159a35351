from __future__ import annotations

import asyncio
import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, TypeVar

from zinemaker.constants import (
    FALLBACK_PAGE_SIZE,
    LOAD_TIMEOUT_SECONDS,
    MAX_SOURCE_BYTES,
    RASTER_SAMPLE_SCALE,
    SOURCE_MEDIA_TYPE,
)
from zinemaker.errors import InputRejected, LoadCorrupt, LoadTimeout, PageRenderFailed
from zinemaker.imposition.core import MINI_ZINE_SIGNATURE, BookletLayout, Signature, compute_layout
from zinemaker.log import log_event
from zinemaker.rendering.page_store import LogicalPage, PageStatus, PageStore, blank_raster
from zinemaker.rendering.rasterizer import PdfiumRasterizer, RasterizationService

_LOGGER = logging.getLogger("zinemaker.render")
_T = TypeVar("_T")

ProgressCallback = Callable[["PageUpdate"], None]


def format_file_size(size_bytes: int) -> str:
    units = ("B", "KB", "MB", "GB")
    size = float(size_bytes)
    unit_index = 0
    while size >= 1024 and unit_index < len(units) - 1:
        size /= 1024
        unit_index += 1
    return f"{size:.1f} {units[unit_index]}"


@dataclass(frozen=True)
class SourceDocument:
    payload: bytes
    filename: str = "document.pdf"
    media_type: str | None = SOURCE_MEDIA_TYPE

    @property
    def size(self) -> int:
        return len(self.payload)


def validate_source_document(source: SourceDocument, *, max_bytes: int = MAX_SOURCE_BYTES) -> SourceDocument:
    if source.media_type is not None:
        accepted = source.media_type.split(";", 1)[0].strip().lower() == SOURCE_MEDIA_TYPE
    else:
        accepted = Path(source.filename).suffix.lower() == ".pdf"
    if not accepted:
        raise InputRejected("Please select a PDF file (.pdf extension).")
    if source.size == 0:
        raise InputRejected("PDF file appears to be empty.")
    check_source_size(source.size, max_bytes=max_bytes)
    return source


def check_source_size(size: int, *, max_bytes: int = MAX_SOURCE_BYTES) -> None:
    if size > max_bytes:
        raise InputRejected(f"PDF file is too large ({format_file_size(size)}, max {format_file_size(max_bytes)}).")


@dataclass(frozen=True)
class PageUpdate:
    slot: int
    status: PageStatus
    completed: int
    total: int

    @property
    def page_number(self) -> int:
        return self.slot + 1

    @property
    def percent(self) -> int:
        return round(self.completed / self.total * 100) if self.total else 100


@dataclass
class Booklet:
    """Aggregate of one processed document: its layout and its page rasters."""

    layout: BookletLayout
    pages: PageStore
    source_name: str = "document.pdf"
    failures: tuple[PageRenderFailed, ...] = field(default=())

    def __post_init__(self) -> None:
        if len(self.pages) != len(self.layout.sheets) * self.layout.signature.capacity:
            raise ValueError("page store size must equal sheets x signature capacity")

    def page(self, logical_index: int) -> LogicalPage:
        return self.pages.get(logical_index)

    @property
    def rendered_count(self) -> int:
        return sum(1 for page in self.pages.pages() if page.status is PageStatus.READY)

    @property
    def fallback_count(self) -> int:
        return sum(1 for page in self.pages.pages() if page.status is PageStatus.FALLBACK)

    def status_message(self) -> str:
        converted = self.layout.used_count
        blanks = self.layout.capacity - converted
        if blanks > 0:
            return f"Converted {converted} page(s). Filled {blanks} blank page(s). Ready to print!"
        return f"Successfully converted all {converted} pages. Ready to print!"


class RenderOrchestrator:
    """Rasterizes a source document into a fully populated ``Booklet``.

    Pages are rendered strictly one at a time on a single worker thread so at
    most one decoded page is in flight. A new document releases every raster of
    the previous one before its load starts.
    """

    def __init__(
        self,
        rasterizer_factory: Callable[[], RasterizationService] = PdfiumRasterizer,
        *,
        sample_scale: float = RASTER_SAMPLE_SCALE,
        load_timeout: float = LOAD_TIMEOUT_SECONDS,
        signature: Signature = MINI_ZINE_SIGNATURE,
    ) -> None:
        self._rasterizer_factory = rasterizer_factory
        self._sample_scale = sample_scale
        self._load_timeout = load_timeout
        self._signature = signature
        self._executor = self._new_worker()
        self._lock = asyncio.Lock()
        self._booklet: Booklet | None = None

    @staticmethod
    def _new_worker() -> ThreadPoolExecutor:
        return ThreadPoolExecutor(max_workers=1, thread_name_prefix="zinemaker-render")

    @property
    def booklet(self) -> Booklet | None:
        return self._booklet

    def has_content(self) -> bool:
        return self._booklet is not None

    def release(self, booklet: Booklet | None = None) -> int:
        """Release ``booklet`` (default: the current one); a stale booklet leaves the current one alone."""
        if booklet is None or booklet is self._booklet:
            booklet, self._booklet = self._booklet, None
        if booklet is None:
            return 0
        return booklet.pages.release_all()

    def shutdown(self) -> None:
        self.release()
        self._executor.shutdown(wait=False, cancel_futures=True)

    def _retire_worker(self, rasterizer: RasterizationService) -> None:
        # The abandoned load still occupies the old worker: close the rasterizer
        # behind it and give later documents a fresh worker.
        stale, self._executor = self._executor, self._new_worker()
        stale.submit(rasterizer.close)
        stale.shutdown(wait=False)
        log_event(_LOGGER, logging.WARNING, "render.worker.retired", reason="load_timeout")

    async def _run(self, func: Callable[..., _T], *args: object) -> _T:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(self._executor, func, *args)

    async def compose(self, booklet: Booklet, func: Callable[..., _T], *args: object) -> _T:
        """Run ``func(booklet, *args)`` on the render worker while no document is being processed."""
        async with self._lock:
            if booklet is not self._booklet:
                raise InputRejected("The document was closed before its layout was built. Upload it again.")
            return await self._run(func, booklet, *args)

    async def _load(self, rasterizer: RasterizationService, source: SourceDocument) -> int:
        try:
            return await asyncio.wait_for(self._run(rasterizer.load, source.payload), timeout=self._load_timeout)
        except asyncio.TimeoutError as exc:
            raise LoadTimeout(
                "The file took too long to load. It may be corrupted or too large."
            ) from exc
        except LoadCorrupt:
            raise
        except Exception as exc:
            raise LoadCorrupt(f"Could not process this PDF: {exc}") from exc

    async def process_document(
        self,
        source: SourceDocument,
        on_progress: ProgressCallback | None = None,
    ) -> Booklet:
        validate_source_document(source)

        async with self._lock:
            self.release()

            rasterizer = self._rasterizer_factory()
            timed_out = False
            try:
                try:
                    source_pages = await self._load(rasterizer, source)
                except (LoadTimeout, LoadCorrupt) as exc:
                    timed_out = isinstance(exc, LoadTimeout)
                    log_event(
                        _LOGGER,
                        logging.WARNING,
                        "render.document.load_failed",
                        source_name=source.filename,
                        payload_bytes=source.size,
                        error=exc.message,
                    )
                    raise

                layout = compute_layout(source_pages, self._signature)
                log_event(
                    _LOGGER,
                    logging.INFO,
                    "render.document.loaded",
                    source_name=source.filename,
                    source_pages=source_pages,
                    sheets=len(layout.sheets),
                    dropped_pages=layout.dropped_count,
                )

                store = PageStore(layout.capacity)
                try:
                    failures = await self._render_pages(rasterizer, layout, store, on_progress)
                except BaseException:
                    store.release_all()
                    raise
            finally:
                if timed_out:
                    self._retire_worker(rasterizer)
                else:
                    await self._run(rasterizer.close)

            booklet = Booklet(layout=layout, pages=store, source_name=source.filename, failures=failures)
            self._booklet = booklet

        log_event(
            _LOGGER,
            logging.INFO,
            "render.document.completed",
            source_name=source.filename,
            rendered_pages=booklet.rendered_count,
            fallback_pages=booklet.fallback_count,
            failed_pages=[failure.page_number for failure in failures],
        )
        return booklet

    async def _render_pages(
        self,
        rasterizer: RasterizationService,
        layout: BookletLayout,
        store: PageStore,
        on_progress: ProgressCallback | None,
    ) -> tuple[PageRenderFailed, ...]:
        failures: list[PageRenderFailed] = []
        fallback_size = FALLBACK_PAGE_SIZE
        total = layout.capacity

        for slot in range(layout.used_count):
            store.mark_pending(slot)
            try:
                image = await self._run(rasterizer.render_page, slot, self._sample_scale)
            except Exception as exc:
                failure = PageRenderFailed(slot + 1, exc)
                failures.append(failure)
                log_event(_LOGGER, logging.WARNING, "render.page.failed", page=slot + 1, error=str(exc))
                store.mark_failed(slot)
                store.set(slot, blank_raster(fallback_size), PageStatus.FALLBACK)
            else:
                fallback_size = image.size
                store.set(slot, image, PageStatus.READY)
                log_event(_LOGGER, logging.DEBUG, "render.page.rendered", page=slot + 1, size=image.size)
            self._notify(on_progress, store.get(slot), completed=slot + 1, total=total)

        for slot in range(layout.used_count, total):
            store.set(slot, blank_raster(fallback_size), PageStatus.FALLBACK)
            self._notify(on_progress, store.get(slot), completed=slot + 1, total=total)

        return tuple(failures)

    @staticmethod
    def _notify(on_progress: ProgressCallback | None, page: LogicalPage, *, completed: int, total: int) -> None:
        if on_progress is None:
            return
        on_progress(PageUpdate(slot=page.index, status=page.status, completed=completed, total=total))
