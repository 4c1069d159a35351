from __future__ import annotations

from dataclasses import dataclass

from zinemaker.imposition.core import BookletLayout, Signature


@dataclass(frozen=True)
class CellBox:
    cell_id: str
    x: int
    y: int
    width: int
    height: int


@dataclass(frozen=True)
class Placement:
    x: int
    y: int
    width: int
    height: int
    scale: float


def _edges(total: int, parts: int) -> list[int]:
    # Rounded cumulative edges: adjacent cells share a boundary, the last edge is ``total``.
    return [round(total * index / parts) for index in range(parts + 1)]


def grid_boxes(signature: Signature, sheet_size: tuple[int, int]) -> dict[str, CellBox]:
    width, height = sheet_size
    if width <= 0 or height <= 0:
        raise ValueError(f"sheet size must be positive, got {width}x{height}")

    x_edges = _edges(width, signature.columns)
    y_edges = _edges(height, signature.rows)
    return {
        cell.cell_id: CellBox(
            cell_id=cell.cell_id,
            x=x_edges[cell.column],
            y=y_edges[cell.row],
            width=x_edges[cell.column + 1] - x_edges[cell.column],
            height=y_edges[cell.row + 1] - y_edges[cell.row],
        )
        for cell in signature.cells
    }


def letterbox(source_size: tuple[int, int], box_size: tuple[int, int]) -> Placement:
    source_width, source_height = source_size
    box_width, box_height = box_size
    if source_width <= 0 or source_height <= 0:
        raise ValueError(f"source size must be positive, got {source_width}x{source_height}")

    scale = min(box_width / source_width, box_height / source_height)
    rendered_width = min(box_width, max(1, round(source_width * scale)))
    rendered_height = min(box_height, max(1, round(source_height * scale)))
    return Placement(
        x=(box_width - rendered_width) // 2,
        y=(box_height - rendered_height) // 2,
        width=rendered_width,
        height=rendered_height,
        scale=scale,
    )


@dataclass(frozen=True)
class SheetSide:
    sheet_index: int
    face: str
    rotation: int
    cells: tuple[tuple[str, int, int], ...]


def sheet_sides(layout: BookletLayout) -> tuple[SheetSide, ...]:
    """Front/back sides in output order: each sheet's front, then its back."""
    sides: list[SheetSide] = []
    for sheet in layout.sheets:
        sides.append(SheetSide(sheet_index=sheet.index, face="front", rotation=0, cells=sheet.rotation_map()))
        sides.append(SheetSide(sheet_index=sheet.index, face="back", rotation=180, cells=()))
    return tuple(sides)
