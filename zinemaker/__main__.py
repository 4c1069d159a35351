from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from pathlib import Path
from typing import Sequence

from zinemaker.compose.print_surface import open_print_surface
from zinemaker.constants import PAPER_SIZES
from zinemaker.errors import ZineError
from zinemaker.paper import Orientation
from zinemaker.rendering.orchestrator import PageUpdate, SourceDocument
from zinemaker.session import (
    ChangeSettings,
    CloseDocument,
    CommandFailed,
    DocumentReady,
    ExportReady,
    PrintSurfaceReady,
    RequestExport,
    RequestPrintSurface,
    SessionEvent,
    SubmitDocument,
    ZineSession,
)
from zinemaker.settings import PreferenceStore, SettingsState


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="zinemaker", description="Fold a PDF into a printable 8 or 16 page zine.")
    parser.add_argument("source", type=Path, help="PDF file to convert")
    parser.add_argument("--paper", choices=sorted(PAPER_SIZES), help="paper size (remembered for next time)")
    parser.add_argument(
        "--orientation",
        choices=[item.value for item in Orientation],
        help="sheet orientation (remembered for next time)",
    )
    parser.add_argument("--export", type=Path, metavar="OUT.pdf", help="write the imposed zine as a PDF")
    parser.add_argument("--print-surface", type=Path, metavar="OUT.html", help="write the print layout as HTML")
    parser.add_argument("--open", action="store_true", help="open the print layout in a browser")
    parser.add_argument("--settings", type=Path, help="preference file to read and update")
    parser.add_argument("-v", "--verbose", action="store_true", help="log pipeline events")
    return parser


def _report(event: SessionEvent) -> None:
    if isinstance(event, PageUpdate):
        print(f"Page {event.page_number} of {event.total}: {event.status.value} ({event.percent}%)", file=sys.stderr)
    elif isinstance(event, CommandFailed):
        print(f"Error: {event.error.message}", file=sys.stderr)


async def _run(args: argparse.Namespace) -> int:
    session = ZineSession(settings=SettingsState(PreferenceStore(args.settings)), listener=_report)
    try:
        if args.paper or args.orientation:
            changed = await session.handle(ChangeSettings(paper_size=args.paper, orientation=args.orientation))
            if isinstance(changed, CommandFailed):
                return 1

        source = SourceDocument(payload=args.source.read_bytes(), filename=args.source.name, media_type=None)
        loaded = await session.handle(SubmitDocument(source))
        if not isinstance(loaded, DocumentReady):
            return 1
        print(loaded.status_message)
        for warning in loaded.warnings:
            print(f"Warning: {warning}", file=sys.stderr)
        if loaded.booklet.layout.dropped_count:
            print(f"Dropped {loaded.booklet.layout.dropped_count} page(s) beyond the zine capacity.", file=sys.stderr)

        snapshot = session.settings.snapshot()
        if args.export:
            exported = await session.handle(RequestExport(output_path=args.export, settings=snapshot))
            if not isinstance(exported, ExportReady):
                return 1
            print(f"PDF exported successfully as {exported.artifact.path}")

        if args.print_surface or args.open:
            printed = await session.handle(RequestPrintSurface(settings=snapshot))
            if not isinstance(printed, PrintSurfaceReady):
                return 1
            if args.print_surface:
                args.print_surface.parent.mkdir(parents=True, exist_ok=True)
                args.print_surface.write_text(printed.surface.html, encoding="utf-8")
                print(f"Print layout written to {args.print_surface}")
            if args.open:
                directory = args.print_surface.parent if args.print_surface else Path.cwd()
                open_print_surface(printed.surface, directory)
        return 0
    finally:
        await session.handle(CloseDocument())
        session.orchestrator.shutdown()


def main(argv: Sequence[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(level=logging.INFO if args.verbose else logging.WARNING)

    try:
        return asyncio.run(_run(args))
    except OSError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1
    except ZineError as exc:
        print(f"Error: {exc.message}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
