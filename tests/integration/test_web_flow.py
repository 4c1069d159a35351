from __future__ import annotations

import io
import json
import os
import re
import time
from pathlib import Path
from typing import Any

import pytest
from fastapi import FastAPI, HTTPException
from fastapi.testclient import TestClient
from PIL import Image
from pypdf import PdfReader, PdfWriter

from zinemaker.rendering.orchestrator import RenderOrchestrator
from zinemaker.rendering.rasterizer import RasterizationService
from zinemaker.settings import SettingsState
from zinemaker.web.app import _cleanup_stale_artifacts, _resolve_request_artifact_path, create_app

pytestmark = pytest.mark.integration

_EXPIRED = "This download link has expired after cleanup. Regenerate the zine to create a new link."


def _pdf_bytes(page_count: int) -> bytes:
    writer = PdfWriter()
    for _ in range(page_count):
        writer.add_blank_page(width=297, height=420)

    payload = io.BytesIO()
    writer.write(payload)
    return payload.getvalue()


def _client(tmp_path: Path) -> TestClient:
    app = create_app(artifact_dir=tmp_path / "generated", settings_path=tmp_path / "settings.json")
    return TestClient(app)


def _upload(payload: bytes, name: str = "input.pdf", media_type: str = "application/pdf") -> dict[str, tuple[str, bytes, str]]:
    return {"file": (name, payload, media_type)}


def test_health_and_index(tmp_path: Path) -> None:
    with _client(tmp_path) as client:
        assert client.get("/health").json() == {"status": "ok"}

        index = client.get("/")
        assert index.status_code == 200
        assert "PDF to Zine Maker" in index.text
        assert '<option value="a4" selected>' in index.text
        assert '<option value="landscape" selected>' in index.text


def test_settings_endpoint_updates_and_persists(tmp_path: Path) -> None:
    with _client(tmp_path) as client:
        response = client.post("/settings", data={"paper_size": "Letter", "orientation": "portrait"})
        assert response.status_code == 200
        assert response.json() == {"paper_size": "letter", "orientation": "portrait"}

        rejected = client.post("/settings", data={"orientation": "upside-down"})
        assert rejected.status_code == 400
        assert "unsupported orientation 'upside-down'" in rejected.json()["detail"]

        assert '<option value="letter" selected>' in client.get("/").text

    stored = json.loads((tmp_path / "settings.json").read_text(encoding="utf-8"))
    assert stored == {"paper_size": "letter", "orientation": "portrait"}


def test_export_generates_downloadable_pdf(tmp_path: Path) -> None:
    with _client(tmp_path) as client:
        response = client.post(
            "/zine",
            data={"action": "export", "paper_size": "a5", "orientation": "portrait"},
            files=_upload(_pdf_bytes(10)),
        )
        assert response.status_code == 200
        assert "Converted 10 page(s). Filled 6 blank page(s). Ready to print!" in response.text

        match = re.search(r'href="(/download/[a-f0-9]{32}/zine-export-[0-9T-]+\.pdf)"', response.text)
        assert match is not None
        download = client.get(match.group(1))
        assert download.status_code == 200
        assert download.headers["content-type"] == "application/pdf"

    reader = PdfReader(io.BytesIO(download.content))
    assert len(reader.pages) == 4
    assert float(reader.pages[0].mediabox.width) == pytest.approx(419.53, abs=0.01)
    assert float(reader.pages[0].mediabox.height) == pytest.approx(595.28, abs=0.01)


def test_preview_links_one_png_per_sheet(tmp_path: Path) -> None:
    with _client(tmp_path) as client:
        response = client.post("/zine", data={"action": "preview"}, files=_upload(_pdf_bytes(12)))
        assert response.status_code == 200

        urls = re.findall(r'src="(/download/[a-f0-9]{32}/preview_sheet\d\.png)"', response.text)
        assert [url.rsplit("/", 1)[1] for url in urls] == ["preview_sheet1.png", "preview_sheet2.png"]
        image = client.get(urls[0])
        assert image.status_code == 200
        assert image.headers["content-type"] == "image/png"


def test_print_returns_standalone_layout(tmp_path: Path) -> None:
    with _client(tmp_path) as client:
        response = client.post("/zine", data={"action": "print"}, files=_upload(_pdf_bytes(4), "four.pdf"))

    assert response.status_code == 200
    assert "<title>Zine Print Layout - four.pdf</title>" in response.text
    assert response.text.count('data-face="front"') == 1
    assert response.text.count('data-face="back"') == 1
    assert "@page { size: 297mm 210mm; margin: 0; }" in response.text


def test_each_request_releases_its_document(tmp_path: Path) -> None:
    app = create_app(artifact_dir=tmp_path / "generated", settings_path=tmp_path / "settings.json")
    with TestClient(app) as client:
        response = client.post("/zine", data={"action": "preview"}, files=_upload(_pdf_bytes(2)))
        assert response.status_code == 200

    assert not app.state.orchestrator.has_content()


def test_rejects_non_pdf_upload(tmp_path: Path) -> None:
    with _client(tmp_path) as client:
        response = client.post("/zine", data={"action": "export"}, files=_upload(b"hello", "notes.txt", "text/plain"))

    assert response.status_code == 400
    assert "Please select a PDF file (.pdf extension)." in response.text


def test_rejects_corrupt_pdf(tmp_path: Path) -> None:
    with _client(tmp_path) as client:
        response = client.post("/zine", files=_upload(b"%PDF-1.4 broken body"))

    assert response.status_code == 400
    assert "The file is not a valid PDF or is corrupted." in response.text


def test_rejects_missing_upload_and_invalid_action(tmp_path: Path) -> None:
    with _client(tmp_path) as client:
        missing = client.post("/zine", data={"action": "export"})
        invalid = client.post("/zine", data={"action": "fold"}, files=_upload(_pdf_bytes(1)))
        bad_paper = client.post("/zine", data={"paper_size": "b4"}, files=_upload(_pdf_bytes(1)))

    assert missing.status_code == 400
    assert "Upload a PDF file to continue." in missing.text
    assert invalid.status_code == 400
    assert "Invalid action" in invalid.text
    assert bad_paper.status_code == 400
    assert "unsupported paper size" in bad_paper.text


@pytest.mark.parametrize("request_id", ["invalid", "g" * 32, "A" * 32])
def test_download_rejects_invalid_request_id(tmp_path: Path, request_id: str) -> None:
    with pytest.raises(HTTPException) as exc_info:
        _resolve_request_artifact_path(tmp_path, request_id, "zine.pdf")

    assert exc_info.value.status_code == 400
    assert exc_info.value.detail == "Invalid request id"


@pytest.mark.parametrize("filename", ["nested/zine.pdf", "..", "a\\b.pdf"])
def test_download_rejects_path_traversal_filename(tmp_path: Path, filename: str) -> None:
    with pytest.raises(HTTPException) as exc_info:
        _resolve_request_artifact_path(tmp_path, "a" * 32, filename)

    assert exc_info.value.status_code == 400
    assert exc_info.value.detail == "Invalid filename"


def test_download_rejects_missing_and_unsupported_files(tmp_path: Path) -> None:
    request_dir = tmp_path / ("a" * 32)
    request_dir.mkdir()
    (request_dir / "notes.txt").write_text("private", encoding="utf-8")

    for filename in ("missing.pdf", "notes.txt"):
        with pytest.raises(HTTPException) as exc_info:
            _resolve_request_artifact_path(tmp_path, "a" * 32, filename)
        assert exc_info.value.status_code == 404
        assert exc_info.value.detail == "File not found"


def test_download_expired_request_returns_410(tmp_path: Path) -> None:
    with _client(tmp_path) as client:
        expired = client.get(f"/download/{'a' * 32}/zine.pdf")
        expired_html = client.get(f"/download/{'a' * 32}/zine.pdf", headers={"accept": "text/html"})

    assert expired.status_code == 410
    assert expired.json() == {"detail": _EXPIRED}
    assert expired_html.status_code == 410
    assert _EXPIRED in expired_html.text


def test_cleanup_removes_stale_generated_artifacts(tmp_path: Path) -> None:
    stale_dir = tmp_path / ("a" * 32)
    stale_dir.mkdir()
    (stale_dir / "zine-export.pdf").write_bytes(b"stale")
    fresh_dir = tmp_path / ("b" * 32)
    fresh_dir.mkdir()

    old = time.time() - 7200
    os.utime(stale_dir, (old, old))

    removed = _cleanup_stale_artifacts(tmp_path, retention_seconds=3600)

    assert removed == 1
    assert not stale_dir.exists()
    assert fresh_dir.exists()
    assert _cleanup_stale_artifacts(tmp_path, retention_seconds=-1) == 0


class _SettingsChangingRasterizer(RasterizationService):
    """Flips the shared paper settings mid-render, the way a second client would."""

    def __init__(self, settings: SettingsState, calls: list[str]) -> None:
        self._settings = settings
        self._calls = calls

    def load(self, payload: bytes) -> int:
        self._calls.append("load")
        self._settings.update(paper_size="a3", orientation="landscape")
        return 2

    def render_page(self, index: int, scale: float) -> Image.Image:
        return Image.new("RGB", (60, 84), "#204060")


def _app_with_fake_rasterizer(tmp_path: Path, calls: list[str], **kwargs: Any) -> FastAPI:
    state: dict[str, SettingsState] = {}
    app = create_app(
        artifact_dir=tmp_path / "generated",
        settings_path=tmp_path / "settings.json",
        orchestrator_factory=lambda: RenderOrchestrator(lambda: _SettingsChangingRasterizer(state["settings"], calls)),
        **kwargs,
    )
    state["settings"] = app.state.settings
    return app


def test_export_uses_the_settings_sent_with_the_upload(tmp_path: Path) -> None:
    calls: list[str] = []
    app = _app_with_fake_rasterizer(tmp_path, calls)

    with TestClient(app) as client:
        response = client.post(
            "/zine",
            data={"action": "export", "paper_size": "letter", "orientation": "portrait"},
            files=_upload(_pdf_bytes(2)),
        )
        assert response.status_code == 200
        match = re.search(r'href="(/download/[a-f0-9]{32}/[^"]+\.pdf)"', response.text)
        assert match is not None
        download = client.get(match.group(1))

    assert calls == ["load"]
    page = PdfReader(io.BytesIO(download.content)).pages[0]
    assert float(page.mediabox.width) == pytest.approx(612.0, abs=0.01)
    assert float(page.mediabox.height) == pytest.approx(792.0, abs=0.01)
    assert app.state.settings.snapshot().paper_size == "a3"


def test_oversized_upload_is_rejected_before_loading(tmp_path: Path) -> None:
    calls: list[str] = []
    app = _app_with_fake_rasterizer(tmp_path, calls, max_upload_bytes=1024)

    with TestClient(app) as client:
        response = client.post("/zine", data={"action": "export"}, files=_upload(b"%PDF-1.4" + b"0" * 4096))

    assert response.status_code == 400
    assert "PDF file is too large (4.0 KB, max 1.0 KB)." in response.text
    assert calls == []
