from __future__ import annotations

import asyncio
import io
from pathlib import Path

import pytest
from pypdf import PdfReader, PdfWriter

from zinemaker.compose.export import build_export_file
from zinemaker.compose.print_surface import build_print_surface
from zinemaker.errors import LoadCorrupt
from zinemaker.paper import LayoutSettings
from zinemaker.rendering.orchestrator import Booklet, RenderOrchestrator, SourceDocument
from zinemaker.rendering.page_store import PageStatus
from zinemaker.rendering.rasterizer import PdfiumRasterizer

pytestmark = pytest.mark.integration


def _pdf_bytes(page_count: int, *, width: float = 300, height: float = 420) -> bytes:
    writer = PdfWriter()
    for _ in range(page_count):
        writer.add_blank_page(width=width, height=height)

    payload = io.BytesIO()
    writer.write(payload)
    return payload.getvalue()


def _render(payload: bytes, name: str = "input.pdf") -> tuple[RenderOrchestrator, Booklet]:
    orchestrator = RenderOrchestrator()
    try:
        booklet = asyncio.run(orchestrator.process_document(SourceDocument(payload, name)))
    except BaseException:
        orchestrator.shutdown()
        raise
    return orchestrator, booklet


def test_pdfium_rasterizer_renders_pages_at_sample_scale() -> None:
    rasterizer = PdfiumRasterizer()
    try:
        assert rasterizer.load(_pdf_bytes(2)) == 2
        image = rasterizer.render_page(1, 2.5)
        assert image.mode == "RGB"
        assert image.width == pytest.approx(750, abs=1)
        assert image.height == pytest.approx(1050, abs=1)
        with pytest.raises(ValueError, match="page index out of range"):
            rasterizer.render_page(2, 1.0)
    finally:
        rasterizer.close()


def test_pdfium_rasterizer_rejects_invalid_and_empty_documents() -> None:
    rasterizer = PdfiumRasterizer()
    with pytest.raises(LoadCorrupt, match="not a valid PDF"):
        rasterizer.load(b"%PDF-1.4 this is not really a pdf")
    with pytest.raises(LoadCorrupt):
        rasterizer.load(_pdf_bytes(0))
    rasterizer.close()


def test_three_page_pdf_becomes_one_sheet_export(tmp_path: Path) -> None:
    orchestrator, booklet = _render(_pdf_bytes(3), "three.pdf")
    try:
        assert len(booklet.layout.sheets) == 1
        assert [page.status for page in booklet.pages.pages()] == [PageStatus.READY] * 3 + [PageStatus.FALLBACK] * 5

        artifact = build_export_file(booklet, LayoutSettings(), tmp_path / "three-zine.pdf", pixels_per_mm=2)
        reader = PdfReader(artifact.path)
        assert len(reader.pages) == 2
        assert float(reader.pages[0].mediabox.width) == pytest.approx(841.89, abs=0.01)
    finally:
        orchestrator.shutdown()


def test_ten_page_pdf_becomes_two_sheets_with_matching_print_layout(tmp_path: Path) -> None:
    orchestrator, booklet = _render(_pdf_bytes(10))
    try:
        settings = LayoutSettings(paper_size="a5", orientation="landscape")
        artifact = build_export_file(booklet, settings, tmp_path / "ten-zine.pdf", pixels_per_mm=2)
        surface = build_print_surface(booklet, settings, pixels_per_mm=2)

        assert len(PdfReader(artifact.path).pages) == 4
        assert surface.sides == artifact.sides
        assert booklet.rendered_count == 10
        assert booklet.fallback_count == 6
    finally:
        orchestrator.shutdown()


def test_corrupt_payload_leaves_no_document() -> None:
    orchestrator = RenderOrchestrator()
    try:
        with pytest.raises(LoadCorrupt):
            asyncio.run(orchestrator.process_document(SourceDocument(b"%PDF-1.7 truncated")))
        assert orchestrator.booklet is None
    finally:
        orchestrator.shutdown()
