from __future__ import annotations


class ZineError(Exception):
    """Base class for failures surfaced to the person making the zine."""

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class InputRejected(ZineError):
    pass


class LoadTimeout(ZineError):
    pass


class LoadCorrupt(ZineError):
    pass


class PageRenderFailed(ZineError):
    """A single page could not be rasterized. Recovered with a blank page."""

    def __init__(self, page_number: int, cause: BaseException) -> None:
        super().__init__(f"Page {page_number} could not be rendered; using a blank page instead ({cause}).")
        self.page_number = page_number
        self.cause = cause


class PopupBlocked(ZineError):
    pass


class ExportEncodingFailed(ZineError):
    pass
