from __future__ import annotations

import io
import logging
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import BinaryIO

from PIL import Image, ImageDraw
from pypdf import PdfReader, PdfWriter, Transformation

from zinemaker.compose.geometry import SheetSide, grid_boxes, letterbox, sheet_sides
from zinemaker.compose.reference import render_back_side
from zinemaker.constants import BLANK_PAGE_COLOR, EXPORT_IMAGE_QUALITY, EXPORT_PIXELS_PER_MM
from zinemaker.errors import ExportEncodingFailed
from zinemaker.imposition.core import SheetLayout
from zinemaker.log import log_event
from zinemaker.paper import LayoutSettings, Orientation, mm_to_points
from zinemaker.rendering.orchestrator import Booklet

_LOGGER = logging.getLogger("zinemaker.compose")


@dataclass(frozen=True)
class ExportArtifact:
    path: Path
    page_count: int
    settings: LayoutSettings
    pixel_size: tuple[int, int]
    sides: tuple[SheetSide, ...]


def export_filename(now: datetime | None = None) -> str:
    timestamp = (now or datetime.now()).strftime("%Y-%m-%dT%H-%M-%S")
    return f"zine-export-{timestamp}.pdf"


class PdfExportEncoder:
    """Paginated PDF writer; image positions are given in millimeters from the top-left corner."""

    def __init__(self, orientation: str | Orientation, unit: str = "mm", format: str = "a4") -> None:
        if unit != "mm":
            raise ValueError(f"unsupported unit '{unit}', expected one of: mm")

        self.settings = LayoutSettings(paper_size=format, orientation=orientation)
        self._width_points, self._height_points = self.settings.dimensions_points
        self._writer = PdfWriter()
        self._page = self._writer.add_blank_page(width=self._width_points, height=self._height_points)

    @property
    def page_count(self) -> int:
        return len(self._writer.pages)

    def add_image(self, image: Image.Image, x: float, y: float, width: float, height: float) -> None:
        if image.mode != "RGB":
            raise ValueError(f"expected an RGB image, got mode {image.mode}")

        buffer = io.BytesIO()
        image.save(buffer, format="PDF", resolution=72.0, quality=EXPORT_IMAGE_QUALITY)
        buffer.seek(0)
        source_page = PdfReader(buffer).pages[0]

        source_width = float(source_page.mediabox.width)
        source_height = float(source_page.mediabox.height)
        target_width = mm_to_points(width)
        target_height = mm_to_points(height)
        x_offset = mm_to_points(x)
        y_offset = self._height_points - mm_to_points(y) - target_height

        transform = (
            Transformation()
            .scale(target_width / source_width, target_height / source_height)
            .translate(x_offset, y_offset)
        )
        self._page.merge_transformed_page(source_page, transform)

    def add_page(self) -> None:
        self._page = self._writer.add_blank_page(width=self._width_points, height=self._height_points)

    def write(self, handle: BinaryIO) -> None:
        self._writer.write(handle)

    def save(self, filename: Path) -> Path:
        filename.parent.mkdir(parents=True, exist_ok=True)
        with filename.open("wb") as handle:
            self.write(handle)
        return filename


def _draw_cut_line(sheet: Image.Image) -> None:
    width, height = sheet.size
    thickness = max(1, round(height / 400))
    dash = max(2, round(width / 120))
    top = height // 2 - thickness // 2
    draw = ImageDraw.Draw(sheet)
    for start in range(0, width, dash * 2):
        draw.rectangle((start, top, min(start + dash, width) - 1, top + thickness - 1), fill="#000000")


def compose_front_sheet(booklet: Booklet, sheet: SheetLayout, size: tuple[int, int]) -> Image.Image:
    boxes = grid_boxes(booklet.layout.signature, size)
    canvas = Image.new("RGB", size, BLANK_PAGE_COLOR)
    try:
        for cell in sheet.cells:
            page = booklet.page(cell.logical_page)
            if page.raster is None:
                raise ValueError(f"logical page {cell.logical_page + 1} has no raster to place")

            box = boxes[cell.cell_id]
            source = page.raster.borrow()
            placement = letterbox(source.size, (box.width, box.height))

            tile = Image.new("RGB", (box.width, box.height), BLANK_PAGE_COLOR)
            fitted = source.resize((placement.width, placement.height), Image.Resampling.LANCZOS)
            tile.paste(fitted, (placement.x, placement.y))
            fitted.close()
            if cell.rotation:
                rotated = tile.rotate(cell.rotation)
                tile.close()
                tile = rotated
            canvas.paste(tile, (box.x, box.y))
            tile.close()

        _draw_cut_line(canvas)
    except BaseException:
        canvas.close()
        raise
    return canvas


def build_export_file(
    booklet: Booklet,
    settings: LayoutSettings,
    output_path: Path,
    *,
    pixels_per_mm: float = EXPORT_PIXELS_PER_MM,
    reference: Image.Image | None = None,
) -> ExportArtifact:
    if not booklet.pages.is_complete():
        raise ValueError("booklet pages must all be ready or fallback before export")

    width_mm, height_mm = settings.dimensions_mm
    size = settings.pixel_size(pixels_per_mm)
    sides = sheet_sides(booklet.layout)
    sheets = {sheet.index: sheet for sheet in booklet.layout.sheets}

    current: Image.Image | None = None
    try:
        encoder = PdfExportEncoder(settings.orientation, "mm", settings.paper_size)
        for position, side in enumerate(sides):
            if position:
                encoder.add_page()
            if side.face == "front":
                current = compose_front_sheet(booklet, sheets[side.sheet_index], size)
            else:
                current = render_back_side(size, reference)
            encoder.add_image(current, 0, 0, width_mm, height_mm)
            current.close()
            current = None
        encoder.save(output_path)
    except Exception as exc:
        if current is not None:
            current.close()
        output_path.unlink(missing_ok=True)
        log_event(
            _LOGGER,
            logging.ERROR,
            "compose.export.failed",
            source_name=booklet.source_name,
            output=str(output_path),
            error=str(exc),
        )
        raise ExportEncodingFailed(f"Failed to export PDF: {exc}") from exc

    log_event(
        _LOGGER,
        logging.INFO,
        "compose.export.completed",
        source_name=booklet.source_name,
        output=str(output_path),
        pages=encoder.page_count,
        paper_size=settings.paper_size,
        orientation=settings.orientation.value,
    )
    return ExportArtifact(
        path=output_path,
        page_count=encoder.page_count,
        settings=settings,
        pixel_size=size,
        sides=sides,
    )
