"""Message channel between a UI collaborator and the zine pipeline.

The UI sends command objects to ``ZineSession.handle`` (or puts them on a queue
drained by ``ZineSession.run``) and receives event objects through the
listener. Nothing here depends on how the UI dispatches its own events.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Union

from zinemaker.compose.export import ExportArtifact, build_export_file
from zinemaker.compose.print_surface import PrintSurface, build_print_surface
from zinemaker.errors import InputRejected, ZineError
from zinemaker.log import log_event
from zinemaker.paper import LayoutSettings
from zinemaker.rendering.orchestrator import Booklet, PageUpdate, RenderOrchestrator, SourceDocument
from zinemaker.settings import SettingsState

_LOGGER = logging.getLogger("zinemaker.session")


@dataclass(frozen=True)
class SubmitDocument:
    source: SourceDocument


@dataclass(frozen=True)
class ChangeSettings:
    paper_size: str | None = None
    orientation: str | None = None


@dataclass(frozen=True)
class RequestPrintSurface:
    settings: LayoutSettings | None = None


@dataclass(frozen=True)
class RequestExport:
    output_path: Path
    settings: LayoutSettings | None = None


@dataclass(frozen=True)
class CloseDocument:
    booklet: Booklet | None = None


Command = Union[SubmitDocument, ChangeSettings, RequestPrintSurface, RequestExport, CloseDocument]


@dataclass(frozen=True)
class DocumentReady:
    booklet: Booklet
    status_message: str
    warnings: tuple[str, ...]


@dataclass(frozen=True)
class SettingsChanged:
    settings: LayoutSettings


@dataclass(frozen=True)
class PrintSurfaceReady:
    surface: PrintSurface


@dataclass(frozen=True)
class ExportReady:
    artifact: ExportArtifact


@dataclass(frozen=True)
class DocumentClosed:
    released: int


@dataclass(frozen=True)
class CommandFailed:
    command: Command
    error: ZineError


SessionEvent = Union[
    PageUpdate,
    DocumentReady,
    SettingsChanged,
    PrintSurfaceReady,
    ExportReady,
    DocumentClosed,
    CommandFailed,
]
Listener = Callable[[SessionEvent], None]


class ZineSession:
    def __init__(
        self,
        orchestrator: RenderOrchestrator | None = None,
        settings: SettingsState | None = None,
        listener: Listener | None = None,
    ) -> None:
        self.orchestrator = orchestrator or RenderOrchestrator()
        self.settings = settings or SettingsState()
        self._listener = listener

    def _emit(self, event: SessionEvent) -> SessionEvent:
        if self._listener is not None:
            self._listener(event)
        return event

    def _require_booklet(self, action: str) -> Booklet:
        booklet = self.orchestrator.booklet
        if booklet is None:
            raise InputRejected(f"Please upload a PDF first before {action}.")
        return booklet

    async def handle(self, command: Command) -> SessionEvent:
        try:
            event = await self._dispatch(command)
        except ZineError as exc:
            log_event(
                _LOGGER,
                logging.WARNING,
                "session.command.failed",
                command=type(command).__name__,
                error=exc.message,
            )
            event = CommandFailed(command=command, error=exc)
        return self._emit(event)

    async def _dispatch(self, command: Command) -> SessionEvent:
        if isinstance(command, SubmitDocument):
            booklet = await self.orchestrator.process_document(command.source, on_progress=self._emit)
            return DocumentReady(
                booklet=booklet,
                status_message=booklet.status_message(),
                warnings=tuple(failure.message for failure in booklet.failures),
            )

        if isinstance(command, ChangeSettings):
            try:
                updated = self.settings.update(paper_size=command.paper_size, orientation=command.orientation)
            except ValueError as exc:
                raise InputRejected(str(exc)) from exc
            return SettingsChanged(settings=updated)

        if isinstance(command, RequestPrintSurface):
            booklet = self._require_booklet("printing")
            snapshot = command.settings or self.settings.snapshot()
            surface = await self.orchestrator.compose(booklet, build_print_surface, snapshot)
            return PrintSurfaceReady(surface=surface)

        if isinstance(command, RequestExport):
            booklet = self._require_booklet("exporting")
            snapshot = command.settings or self.settings.snapshot()
            artifact = await self.orchestrator.compose(booklet, build_export_file, snapshot, command.output_path)
            return ExportReady(artifact=artifact)

        if isinstance(command, CloseDocument):
            return DocumentClosed(released=self.orchestrator.release(command.booklet))

        raise TypeError(f"unsupported command {command!r}")

    async def run(self, commands: asyncio.Queue[Command | None]) -> None:
        while True:
            command = await commands.get()
            try:
                if command is None:
                    return
                await self.handle(command)
            finally:
                commands.task_done()
