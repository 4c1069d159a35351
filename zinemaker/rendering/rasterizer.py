from __future__ import annotations

from abc import ABC, abstractmethod

import pypdfium2 as pdfium
from PIL import Image

from zinemaker.errors import LoadCorrupt


class RasterizationService(ABC):
    """Turns one source document into page images, one page per call."""

    @abstractmethod
    def load(self, payload: bytes) -> int:
        """Open ``payload`` and return its page count."""

    @abstractmethod
    def render_page(self, index: int, scale: float) -> Image.Image:
        """Render the zero-based page ``index`` at ``scale`` times 72 dpi."""

    def close(self) -> None:
        return None


class PdfiumRasterizer(RasterizationService):
    def __init__(self) -> None:
        self._document = None

    def load(self, payload: bytes) -> int:
        try:
            document = pdfium.PdfDocument(payload)
        except pdfium.PdfiumError as exc:
            raise LoadCorrupt("The file is not a valid PDF or is corrupted.") from exc

        page_count = len(document)
        if page_count == 0:
            document.close()
            raise LoadCorrupt("PDF appears to be empty or corrupted.")

        self._document = document
        return page_count

    def render_page(self, index: int, scale: float) -> Image.Image:
        if self._document is None:
            raise RuntimeError("no document loaded")

        page_count = len(self._document)
        if not 0 <= index < page_count:
            raise ValueError(f"page index out of range: {index} (0..{page_count - 1})")

        page = self._document[index]
        try:
            bitmap = page.render(scale=scale)
            try:
                # convert() copies the pixels out of pdfium's buffer.
                return bitmap.to_pil().convert("RGB")
            finally:
                bitmap.close()
        finally:
            page.close()

    def close(self) -> None:
        if self._document is not None:
            self._document.close()
            self._document = None
