from __future__ import annotations

import base64
import io
import logging
import webbrowser
from dataclasses import dataclass
from pathlib import Path

from jinja2 import Environment, PackageLoader, select_autoescape
from PIL import Image

from zinemaker.compose.geometry import SheetSide, grid_boxes, sheet_sides
from zinemaker.compose.reference import reference_image_data_uri
from zinemaker.constants import PRINT_PIXELS_PER_MM
from zinemaker.errors import PopupBlocked
from zinemaker.log import log_event
from zinemaker.paper import LayoutSettings
from zinemaker.rendering.orchestrator import Booklet

_LOGGER = logging.getLogger("zinemaker.compose")

_ENVIRONMENT = Environment(
    loader=PackageLoader("zinemaker", "templates"),
    autoescape=select_autoescape(["html"]),
)


@dataclass(frozen=True)
class PrintSurface:
    html: str
    settings: LayoutSettings
    pixel_size: tuple[int, int]
    sides: tuple[SheetSide, ...]


def _image_data_uri(image: Image.Image, box_size: tuple[int, int]) -> str:
    fitted = image.copy()
    try:
        # thumbnail() keeps the aspect ratio and never enlarges.
        fitted.thumbnail(box_size, Image.Resampling.LANCZOS)
        buffer = io.BytesIO()
        fitted.save(buffer, format="PNG")
    finally:
        fitted.close()
    return "data:image/png;base64," + base64.b64encode(buffer.getvalue()).decode("ascii")


def _format_mm(value: float) -> str:
    return f"{value:.2f}".rstrip("0").rstrip(".")


def build_print_surface(
    booklet: Booklet,
    settings: LayoutSettings,
    *,
    pixels_per_mm: float = PRINT_PIXELS_PER_MM,
) -> PrintSurface:
    if not booklet.pages.is_complete():
        raise ValueError("booklet pages must all be ready or fallback before printing")

    width_mm, height_mm = settings.dimensions_mm
    size = settings.pixel_size(pixels_per_mm)
    boxes = grid_boxes(booklet.layout.signature, size)
    sides = sheet_sides(booklet.layout)

    blocks = []
    for side in sides:
        cells = []
        for cell_id, logical_page, rotation in side.cells:
            box = boxes[cell_id]
            page = booklet.page(logical_page)
            if page.raster is None:
                raise ValueError(f"logical page {logical_page + 1} has no raster to place")
            cells.append(
                {
                    "cell_id": cell_id,
                    "page_number": logical_page + 1,
                    "rotation": rotation,
                    "status": page.status.value,
                    "src": _image_data_uri(page.raster.borrow(), (box.width, box.height)),
                }
            )
        blocks.append({"sheet_index": side.sheet_index, "face": side.face, "rotation": side.rotation, "cells": cells})

    template = _ENVIRONMENT.get_template("print_surface.html")
    html = template.render(
        title=f"Zine Print Layout - {booklet.source_name}",
        width_mm=_format_mm(width_mm),
        height_mm=_format_mm(height_mm),
        grid_areas=booklet.layout.signature.grid_template_areas(),
        columns=booklet.layout.signature.columns,
        rows=booklet.layout.signature.rows,
        blocks=blocks,
        reference_src=reference_image_data_uri(),
    )
    return PrintSurface(html=html, settings=settings, pixel_size=size, sides=sides)


def open_print_surface(surface: PrintSurface, directory: Path) -> Path:
    directory.mkdir(parents=True, exist_ok=True)
    path = directory / "zine-print-layout.html"
    path.write_text(surface.html, encoding="utf-8")

    if not webbrowser.open(path.resolve().as_uri(), new=2):
        log_event(_LOGGER, logging.WARNING, "compose.print.popup_blocked", path=str(path))
        raise PopupBlocked(
            "Could not open the print layout. Allow pop-ups for this site or use Export PDF instead."
        )

    log_event(_LOGGER, logging.INFO, "compose.print.opened", path=str(path), sides=len(surface.sides))
    return path
