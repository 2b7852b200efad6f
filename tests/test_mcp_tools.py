from __future__ import annotations

import json
from pathlib import Path

import pytest

from conftest import load_json, mock_client, read_fixture
from paper_exporter import pipeline
from paper_exporter.errors import DocumentStructureError, FetchError
from paper_exporter.pipeline import ArxivExporter
from paper_mcp.browser_manager import BrowserManager
from paper_mcp.schemas import ArxivExportInput, ListExportsInput
from paper_mcp.tools import arxiv_tools, exports, ieee_tools, publisher_tools
from paper_mcp.utils import settings
from paper_mcp.utils.errors import format_error


@pytest.fixture
def download_dir(tmp_path: Path, monkeypatch: pytest.MonkeyPatch):
    config = tmp_path / "config.yaml"
    config.write_text("http:\n  max_retry: 1\n  retry_delay: 0\n", encoding="utf-8")
    (tmp_path / "out").mkdir()
    monkeypatch.setenv("PAPER_EXPORT_DIR", str(tmp_path / "out"))
    monkeypatch.setenv("PAPER_EXPORT_CONFIG", str(config))
    settings.get_config.cache_clear()
    settings.get_file_manager.cache_clear()
    yield tmp_path / "out"
    settings.get_config.cache_clear()
    settings.get_file_manager.cache_clear()


def test_format_error_suggestions() -> None:
    assert "Call browser_launch first" in format_error("t", RuntimeError("Browser not launched"))
    assert "HTML view" in format_error("t", DocumentStructureError("bad page"))
    assert "internet connection" in format_error("t", FetchError("https://x.org", "HTTP 500"))
    custom = format_error("t", ValueError("x"), "Do this.")
    assert custom.startswith("## ❌ Error in t")
    assert "**Suggestion:** Do this." in custom


def test_schemas_validate_mode_and_limit() -> None:
    assert ArxivExportInput(paper="2401.01234").mode == "links"
    with pytest.raises(ValueError):
        ArxivExportInput(paper="2401.01234", mode="pdf")
    with pytest.raises(ValueError):
        ListExportsInput(limit=0)


async def test_list_exports(download_dir: Path) -> None:
    (download_dir / "a.md").write_text("a")
    (download_dir / "b.textbundle").write_bytes(b"PK")
    (download_dir / "c.txt").write_text("c")

    result = json.loads(await exports.list_exports({}))
    assert result["status"] == "success"
    assert result["files_count"] == 2
    assert {f["filename"] for f in result["files"]} == {"a.md", "b.textbundle"}

    limited = json.loads(await exports.list_exports({"limit": 1}))
    assert limited["files_count"] == 1


async def test_list_exports_reports_bad_input(download_dir: Path) -> None:
    assert "Error in list_exports" in await exports.list_exports({"limit": -3})


async def test_arxiv_export_markdown_saves_file(
    download_dir: Path, arxiv_html: str, monkeypatch: pytest.MonkeyPatch
) -> None:
    async def from_paper(paper, config=None, client=None):
        return ArxivExporter(arxiv_html, None, config)

    monkeypatch.setattr(ArxivExporter, "from_paper", staticmethod(from_paper))
    result = json.loads(await arxiv_tools.arxiv_export_markdown({"paper": "2401.01234v2"}))

    assert result["status"] == "exported"
    assert result["arxiv_id"] == "2401.01234"
    assert result["version"] == "v2"
    assert result["title"] == "Sparse Widgets for Dense Problems"
    saved = Path(result["path"])
    assert saved.parent == download_dir.absolute()
    assert saved.read_text(encoding="utf-8").startswith("# Sparse Widgets")


async def test_arxiv_export_markdown_reports_errors(download_dir: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    async def from_paper(paper, config=None, client=None):
        raise FetchError("https://arxiv.org/html/0000.00000", "HTTP 404")

    monkeypatch.setattr(ArxivExporter, "from_paper", staticmethod(from_paper))
    out = await arxiv_tools.arxiv_export_markdown({"paper": "0000.00000"})
    assert out.startswith("## ❌ Error in arxiv_export_markdown")
    assert "HTTP 404" in out


def _as_json(name: str) -> tuple[int, bytes, str]:
    return 200, json.dumps(load_json(name)).encode(), "application/json"


def _ieee_routes() -> dict:
    base = "/rest/document/1234567"
    return {
        f"{base}/": (200, read_fixture("ieee_content.html").encode(), "text/html"),
        f"{base}/references": _as_json("ieee_references.json"),
        f"{base}/toc": (200, b'[{"title": "Introduction"}]', "application/json"),
        f"{base}/citations": _as_json("ieee_citations.json"),
        f"{base}/footnotes": _as_json("ieee_footnotes.json"),
        f"{base}/metadata": _as_json("ieee_metadata.json"),
    }


@pytest.fixture
def ieee_transport(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(ieee_tools, "make_client", lambda *args, **kwargs: mock_client(_ieee_routes()))


@pytest.fixture
def fresh_browser(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(BrowserManager, "_instance", None)


async def test_ieee_export_markdown_saves_file(download_dir: Path, ieee_transport) -> None:
    result = json.loads(await ieee_tools.ieee_export_markdown({"url": "1234567"}))

    assert result["status"] == "exported"
    assert result["mode"] == "links"
    assert result["document_id"] == "1234567"
    assert result["title"] == "Fast Widgets for Edge Devices"
    assert result["doi"] == "10.1109/TW.2023.1234567"
    saved = Path(result["path"])
    assert saved.parent == download_dir.absolute()
    assert saved.name.startswith("ieee_1234567_")
    text = saved.read_text(encoding="utf-8")
    assert text.startswith("# Fast Widgets for Edge Devices")
    assert "## References" in text


async def test_ieee_export_without_launched_browser_suggests_launch(
    download_dir: Path, ieee_transport, fresh_browser
) -> None:
    out = await ieee_tools.ieee_export_markdown({"url": "1234567", "use_browser": True})
    assert out.startswith("## ❌ Error in ieee_export_markdown")
    assert "Browser not launched" in out
    assert "Call browser_launch first" in out
    assert list(download_dir.iterdir()) == []


async def test_ieee_export_uses_browser_metadata(
    download_dir: Path, ieee_transport, fresh_browser, monkeypatch: pytest.MonkeyPatch
) -> None:
    seen = []

    async def read_ieee_metadata(self, url, timeout=60000):
        seen.append(url)
        return {"articleNumber": "1234567", "title": "From Browser"}

    monkeypatch.setattr(BrowserManager, "read_ieee_metadata", read_ieee_metadata)
    url = "https://ieeexplore.ieee.org/document/1234567"
    result = json.loads(await ieee_tools.ieee_export_markdown({"url": url, "use_browser": True}))

    assert seen == [url]
    assert result["status"] == "exported"
    assert result["document_id"] == "1234567"


async def test_ieee_export_reports_missing_document(download_dir: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(ieee_tools, "make_client", lambda *args, **kwargs: mock_client({}))
    out = await ieee_tools.ieee_export_markdown({"url": "1234567"})
    assert out.startswith("## ❌ Error in ieee_export_markdown")
    assert "use_browser=true" in out


MDPI_URL = "https://www.mdpi.com/1424-8220/24/4/1234/htm"


async def test_publisher_export_rejects_other_sites(download_dir: Path) -> None:
    out = await publisher_tools.publisher_export_markdown({"url": "https://example.org/paper"})
    assert out.startswith("## ❌ Error in publisher_export_markdown")
    assert "Supported sites: link.springer.com" in out


async def test_publisher_export_without_launched_browser_suggests_launch(
    download_dir: Path, fresh_browser
) -> None:
    out = await publisher_tools.publisher_export_markdown({"url": MDPI_URL, "use_browser": True})
    assert "Browser not launched" in out
    assert "Call browser_launch first" in out
    assert list(download_dir.iterdir()) == []


async def test_publisher_export_saves_browser_page(
    download_dir: Path, fresh_browser, monkeypatch: pytest.MonkeyPatch
) -> None:
    seen = []

    async def read_page_html(self, url, timeout=60000):
        seen.append(url)
        return read_fixture("mdpi_sample.html")

    monkeypatch.setattr(BrowserManager, "read_page_html", read_page_html)
    result = json.loads(await publisher_tools.publisher_export_markdown({"url": MDPI_URL, "use_browser": True}))

    assert seen == [MDPI_URL]
    assert result["status"] == "exported"
    assert result["site"] == "MDPI"
    assert result["article_id"] == "10.3390/s24041234"
    assert result["doi"] == "10.3390/s24041234"
    assert result["title"] == "Low-Power Sensing with Adaptive Sampling"
    saved = Path(result["path"])
    assert saved.parent == download_dir.absolute()
    assert saved.read_text(encoding="utf-8").startswith("# Low-Power Sensing with Adaptive Sampling")


async def test_publisher_export_reports_blocked_page(download_dir: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(pipeline, "make_client", lambda *args, **kwargs: mock_client({}))
    out = await publisher_tools.publisher_export_markdown({"url": MDPI_URL})
    assert out.startswith("## ❌ Error in publisher_export_markdown")
    assert "use_browser=true" in out
