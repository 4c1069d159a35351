from zinemaker.imposition.core import (
    MAX_SHEETS,
    MINI_ZINE_SIGNATURE,
    SIGNATURES,
    BookletLayout,
    CellAssignment,
    SheetLayout,
    Signature,
    SignatureCell,
    compute_layout,
    impose_sheet,
    resolve_signature,
    sheets_for_page_count,
)

__all__ = [
    "MAX_SHEETS",
    "MINI_ZINE_SIGNATURE",
    "SIGNATURES",
    "BookletLayout",
    "CellAssignment",
    "SheetLayout",
    "Signature",
    "SignatureCell",
    "compute_layout",
    "impose_sheet",
    "resolve_signature",
    "sheets_for_page_count",
]
