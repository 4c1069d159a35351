from __future__ import annotations

from dataclasses import dataclass, replace
from enum import Enum

from zinemaker.constants import (
    DEFAULT_ORIENTATION,
    DEFAULT_PAPER_SIZE,
    PAPER_LABELS,
    PAPER_SIZES,
    POINTS_PER_MM,
)


class Orientation(str, Enum):
    PORTRAIT = "portrait"
    LANDSCAPE = "landscape"


@dataclass(frozen=True)
class PaperFormat:
    name: str
    label: str
    width_mm: float
    height_mm: float

    def oriented(self, orientation: Orientation) -> tuple[float, float]:
        base = (self.width_mm, self.height_mm)
        if orientation is Orientation.LANDSCAPE:
            return rotate_dimensions(base)
        return base


def rotate_dimensions(dimensions: tuple[float, float]) -> tuple[float, float]:
    width, height = dimensions
    return height, width


def resolve_paper_format(paper_size: str) -> PaperFormat:
    normalized = paper_size.strip().lower()
    try:
        width_mm, height_mm = PAPER_SIZES[normalized]
    except KeyError as exc:
        valid = ", ".join(sorted(PAPER_SIZES))
        raise ValueError(f"unsupported paper size '{paper_size}', expected one of: {valid}") from exc
    return PaperFormat(
        name=normalized,
        label=PAPER_LABELS.get(normalized, normalized.upper()),
        width_mm=width_mm,
        height_mm=height_mm,
    )


def resolve_orientation(value: str | Orientation) -> Orientation:
    if isinstance(value, Orientation):
        return value

    normalized = value.strip().lower()
    try:
        return Orientation(normalized)
    except ValueError as exc:
        valid = ", ".join(item.value for item in Orientation)
        raise ValueError(f"unsupported orientation '{value}', expected one of: {valid}") from exc


def resolve_paper_dimensions(paper_size: str, orientation: str | Orientation) -> tuple[float, float]:
    return resolve_paper_format(paper_size).oriented(resolve_orientation(orientation))


def mm_to_points(value_mm: float) -> float:
    return value_mm * POINTS_PER_MM


def pixel_dimensions(dimensions_mm: tuple[float, float], pixels_per_mm: float) -> tuple[int, int]:
    width_mm, height_mm = dimensions_mm
    return round(width_mm * pixels_per_mm), round(height_mm * pixels_per_mm)


@dataclass(frozen=True)
class LayoutSettings:
    """The paper/orientation pair every artifact is built from.

    Instances are immutable; a settings change produces a new snapshot via
    ``with_changes`` so a reader never sees a new width with a stale height.
    """

    paper_size: str = DEFAULT_PAPER_SIZE
    orientation: Orientation = Orientation(DEFAULT_ORIENTATION)

    def __post_init__(self) -> None:
        object.__setattr__(self, "paper_size", resolve_paper_format(self.paper_size).name)
        object.__setattr__(self, "orientation", resolve_orientation(self.orientation))

    @property
    def paper(self) -> PaperFormat:
        return resolve_paper_format(self.paper_size)

    @property
    def dimensions_mm(self) -> tuple[float, float]:
        return resolve_paper_dimensions(self.paper_size, self.orientation)

    @property
    def dimensions_points(self) -> tuple[float, float]:
        width_mm, height_mm = self.dimensions_mm
        return mm_to_points(width_mm), mm_to_points(height_mm)

    def pixel_size(self, pixels_per_mm: float) -> tuple[int, int]:
        return pixel_dimensions(self.dimensions_mm, pixels_per_mm)

    def with_changes(
        self,
        *,
        paper_size: str | None = None,
        orientation: str | Orientation | None = None,
    ) -> LayoutSettings:
        return replace(
            self,
            paper_size=self.paper_size if paper_size is None else paper_size,
            orientation=self.orientation if orientation is None else resolve_orientation(orientation),
        )

    def as_dict(self) -> dict[str, str]:
        return {"paper_size": self.paper_size, "orientation": self.orientation.value}
