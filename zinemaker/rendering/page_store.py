from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from types import TracebackType

from PIL import Image

from zinemaker.constants import BLANK_PAGE_COLOR
from zinemaker.log import log_event

_LOGGER = logging.getLogger("zinemaker.store")

MAX_SLOTS = 16


class PageStatus(str, Enum):
    EMPTY = "empty"
    PENDING = "pending"
    READY = "ready"
    FALLBACK = "fallback"
    FAILED = "failed"


SETTLED_STATUSES = frozenset({PageStatus.READY, PageStatus.FALLBACK})


class RasterHandle:
    """Owns one decoded page image until ``release`` closes it."""

    def __init__(self, image: Image.Image) -> None:
        self._image: Image.Image | None = image
        self._size = image.size

    @property
    def released(self) -> bool:
        return self._image is None

    @property
    def size(self) -> tuple[int, int]:
        return self._size

    def borrow(self) -> Image.Image:
        # Callers must not close or mutate the returned image.
        if self._image is None:
            raise RuntimeError("raster handle has already been released")
        return self._image

    def release(self) -> bool:
        if self._image is None:
            return False
        self._image.close()
        self._image = None
        return True


def blank_raster(size: tuple[int, int], color: str = BLANK_PAGE_COLOR) -> Image.Image:
    return Image.new("RGB", size, color)


@dataclass(frozen=True)
class LogicalPage:
    index: int
    status: PageStatus
    raster: RasterHandle | None = None

    @property
    def settled(self) -> bool:
        return self.status in SETTLED_STATUSES


class PageStore:
    def __init__(self, capacity: int) -> None:
        if not 0 < capacity <= MAX_SLOTS:
            raise ValueError(f"capacity must be between 1 and {MAX_SLOTS}, got {capacity}")
        self._pages = [LogicalPage(index=slot, status=PageStatus.EMPTY) for slot in range(capacity)]
        self._release_count = 0

    def __len__(self) -> int:
        return len(self._pages)

    def __enter__(self) -> PageStore:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        traceback: TracebackType | None,
    ) -> None:
        self.release_all()

    @property
    def capacity(self) -> int:
        return len(self._pages)

    @property
    def release_count(self) -> int:
        return self._release_count

    def _check_slot(self, slot: int) -> None:
        if not 0 <= slot < len(self._pages):
            raise ValueError(f"slot {slot} is outside 0..{len(self._pages) - 1}")

    def _release(self, page: LogicalPage) -> None:
        if page.raster is not None and page.raster.release():
            self._release_count += 1

    def get(self, slot: int) -> LogicalPage:
        self._check_slot(slot)
        return self._pages[slot]

    def pages(self) -> tuple[LogicalPage, ...]:
        return tuple(self._pages)

    def mark_pending(self, slot: int) -> LogicalPage:
        self._check_slot(slot)
        page = self._pages[slot]
        self._pages[slot] = LogicalPage(index=slot, status=PageStatus.PENDING, raster=page.raster)
        return self._pages[slot]

    def mark_failed(self, slot: int) -> LogicalPage:
        self._check_slot(slot)
        self._release(self._pages[slot])
        self._pages[slot] = LogicalPage(index=slot, status=PageStatus.FAILED)
        return self._pages[slot]

    def set(
        self,
        slot: int,
        raster: Image.Image | RasterHandle,
        status: PageStatus = PageStatus.READY,
    ) -> LogicalPage:
        self._check_slot(slot)
        if status not in SETTLED_STATUSES:
            raise ValueError(f"stored rasters must be ready or fallback, got {status.value}")

        handle = raster if isinstance(raster, RasterHandle) else RasterHandle(raster)
        if handle.released:
            raise ValueError("cannot store a released raster")

        previous = self._pages[slot]
        owned = previous.raster
        if owned is handle or (owned is not None and not owned.released and owned.borrow() is handle.borrow()):
            raise ValueError(f"slot {slot} already owns this raster")

        self._release(previous)
        self._pages[slot] = LogicalPage(index=slot, status=status, raster=handle)
        return self._pages[slot]

    def release_all(self) -> int:
        released_before = self._release_count
        for page in self._pages:
            self._release(page)
        self._pages = [LogicalPage(index=slot, status=PageStatus.EMPTY) for slot in range(len(self._pages))]

        released = self._release_count - released_before
        if released:
            log_event(_LOGGER, logging.DEBUG, "store.released", released=released, capacity=len(self._pages))
        return released

    def is_complete(self) -> bool:
        return all(page.settled for page in self._pages)
