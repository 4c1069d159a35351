from __future__ import annotations

import base64
import io
from functools import lru_cache
from importlib import resources

from PIL import Image

from zinemaker.compose.geometry import letterbox
from zinemaker.constants import BLANK_PAGE_COLOR, REFERENCE_IMAGE_NAME


@lru_cache(maxsize=1)
def load_reference_image() -> Image.Image:
    """The back-side folding guide, decoded once and kept unrotated."""
    asset = resources.files("zinemaker.assets").joinpath(REFERENCE_IMAGE_NAME)
    with asset.open("rb") as handle:
        image = Image.open(handle)
        image.load()
    return image.convert("RGB")


@lru_cache(maxsize=1)
def reference_image_data_uri() -> str:
    buffer = io.BytesIO()
    load_reference_image().save(buffer, format="PNG")
    return "data:image/png;base64," + base64.b64encode(buffer.getvalue()).decode("ascii")


def render_back_side(size: tuple[int, int], reference: Image.Image | None = None) -> Image.Image:
    """Draw the reference image letterboxed into ``size`` and turned 180 degrees."""
    source = reference if reference is not None else load_reference_image()
    placement = letterbox(source.size, size)

    sheet = Image.new("RGB", size, BLANK_PAGE_COLOR)
    fitted = source.resize((placement.width, placement.height), Image.Resampling.LANCZOS)
    try:
        sheet.paste(fitted, (placement.x, placement.y))
    finally:
        fitted.close()

    # Rotating the whole sheet keeps the letterbox centered.
    rotated = sheet.rotate(180)
    sheet.close()
    return rotated
