from __future__ import annotations

from dataclasses import dataclass
from typing import Final

MAX_SHEETS: Final[int] = 2


@dataclass(frozen=True)
class SignatureCell:
    cell_id: str
    slot_offset: int
    row: int
    column: int
    rotation: int


@dataclass(frozen=True)
class Signature:
    name: str
    rows: int
    columns: int
    cells: tuple[SignatureCell, ...]

    def __post_init__(self) -> None:
        capacity = self.rows * self.columns
        if len(self.cells) != capacity:
            raise ValueError(f"signature '{self.name}' must define exactly {capacity} cells")

        offsets = sorted(cell.slot_offset for cell in self.cells)
        if offsets != list(range(capacity)):
            raise ValueError(f"signature '{self.name}' must use each slot offset 0..{capacity - 1} exactly once")

        positions = {(cell.row, cell.column) for cell in self.cells}
        if len(positions) != capacity:
            raise ValueError(f"signature '{self.name}' places two cells in the same grid position")

        for cell in self.cells:
            if cell.rotation not in (0, 180):
                raise ValueError(f"cell '{cell.cell_id}' rotation must be 0 or 180, got {cell.rotation}")
            if not (0 <= cell.row < self.rows and 0 <= cell.column < self.columns):
                raise ValueError(f"cell '{cell.cell_id}' lies outside the {self.rows}x{self.columns} grid")

    @property
    def capacity(self) -> int:
        return len(self.cells)

    def cell_at(self, row: int, column: int) -> SignatureCell:
        for cell in self.cells:
            if cell.row == row and cell.column == column:
                return cell
        raise ValueError(f"no cell at row {row}, column {column}")

    def grid_template_areas(self) -> tuple[str, ...]:
        return tuple(
            " ".join(self.cell_at(row, column).cell_id for column in range(self.columns))
            for row in range(self.rows)
        )


# One sheet folded into an eight-page mini zine. The top row is printed upside
# down so that it reads upright after the horizontal fold; the cut runs along
# the middle of the sheet between the two center columns.
MINI_ZINE_SIGNATURE: Final[Signature] = Signature(
    name="mini-zine",
    rows=2,
    columns=4,
    cells=(
        SignatureCell(cell_id="page5", slot_offset=4, row=0, column=0, rotation=180),
        SignatureCell(cell_id="page4", slot_offset=3, row=0, column=1, rotation=180),
        SignatureCell(cell_id="page3", slot_offset=2, row=0, column=2, rotation=180),
        SignatureCell(cell_id="page2", slot_offset=1, row=0, column=3, rotation=180),
        SignatureCell(cell_id="page6", slot_offset=5, row=1, column=0, rotation=0),
        SignatureCell(cell_id="page7", slot_offset=6, row=1, column=1, rotation=0),
        SignatureCell(cell_id="page8", slot_offset=7, row=1, column=2, rotation=0),
        SignatureCell(cell_id="page1", slot_offset=0, row=1, column=3, rotation=0),
    ),
)

SIGNATURES: Final[dict[str, Signature]] = {MINI_ZINE_SIGNATURE.name: MINI_ZINE_SIGNATURE}


def resolve_signature(name: str) -> Signature:
    try:
        return SIGNATURES[name]
    except KeyError as exc:
        valid = ", ".join(sorted(SIGNATURES))
        raise ValueError(f"unsupported signature '{name}', expected one of: {valid}") from exc


@dataclass(frozen=True)
class CellAssignment:
    sheet_index: int
    cell_id: str
    row: int
    column: int
    logical_page: int
    rotation: int
    fallback: bool


@dataclass(frozen=True)
class SheetLayout:
    index: int
    base_offset: int
    cells: tuple[CellAssignment, ...]

    def rotation_map(self) -> tuple[tuple[str, int, int], ...]:
        return tuple((cell.cell_id, cell.logical_page, cell.rotation) for cell in self.cells)


@dataclass(frozen=True)
class BookletLayout:
    signature: Signature
    page_count: int
    used_count: int
    dropped_count: int
    sheets: tuple[SheetLayout, ...]

    @property
    def capacity(self) -> int:
        return len(self.sheets) * self.signature.capacity

    @property
    def fallback_pages(self) -> tuple[int, ...]:
        return tuple(range(self.used_count, self.capacity))

    def cell_mapping(self) -> tuple[tuple[int, tuple[tuple[str, int, int], ...]], ...]:
        return tuple((sheet.index, sheet.rotation_map()) for sheet in self.sheets)


def sheets_for_page_count(page_count: int, *, sheet_capacity: int, max_sheets: int = MAX_SHEETS) -> int:
    if page_count < 0:
        raise ValueError("page_count must be >= 0")
    if sheet_capacity <= 0:
        raise ValueError("sheet_capacity must be > 0")

    needed = -(-page_count // sheet_capacity)
    return max(1, min(needed, max_sheets))


def impose_sheet(sheet_index: int, signature: Signature, used_count: int) -> SheetLayout:
    base_offset = sheet_index * signature.capacity
    cells = tuple(
        CellAssignment(
            sheet_index=sheet_index,
            cell_id=cell.cell_id,
            row=cell.row,
            column=cell.column,
            logical_page=base_offset + cell.slot_offset,
            rotation=cell.rotation,
            fallback=base_offset + cell.slot_offset >= used_count,
        )
        for cell in signature.cells
    )
    return SheetLayout(index=sheet_index, base_offset=base_offset, cells=cells)


def compute_layout(page_count: int, signature: Signature = MINI_ZINE_SIGNATURE) -> BookletLayout:
    sheet_count = sheets_for_page_count(page_count, sheet_capacity=signature.capacity)
    capacity = sheet_count * signature.capacity
    used_count = min(page_count, capacity)

    sheets = tuple(impose_sheet(sheet_index, signature, used_count) for sheet_index in range(sheet_count))
    return BookletLayout(
        signature=signature,
        page_count=page_count,
        used_count=used_count,
        dropped_count=page_count - used_count,
        sheets=sheets,
    )
