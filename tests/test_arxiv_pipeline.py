from __future__ import annotations

import base64
import io
import json
import zipfile

import pytest

from conftest import image_bytes, mock_client
from paper_exporter.config import CitationConfig, Config, HttpConfig, ImagesConfig
from paper_exporter.errors import DocumentStructureError, FetchError
from paper_exporter.pipeline import ArxivExporter, parse_arxiv_ref, resolve_arxiv_html_url

FIGURE_URL = "https://arxiv.org/html/2401.01234v2/x1.png"
PAGE_URL = "https://arxiv.org/html/2401.01234v2"


@pytest.mark.parametrize(
    "paper,expected",
    [
        ("2401.01234", ("2401.01234", None)),
        ("2401.01234v3", ("2401.01234", "v3")),
        ("arXiv:1706.03762v7", ("1706.03762", "v7")),
        ("https://arxiv.org/abs/2401.01234v2", ("2401.01234", "v2")),
        ("not a paper", (None, None)),
    ],
)
def test_parse_arxiv_ref(paper: str, expected) -> None:
    assert parse_arxiv_ref(paper) == expected


async def test_resolve_html_url_keeps_versioned_ids() -> None:
    assert await resolve_arxiv_html_url("2401.01234v2") == PAGE_URL
    assert await resolve_arxiv_html_url(PAGE_URL + "/") == PAGE_URL + "/"


async def test_resolve_html_url_looks_up_latest_version(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr("paper_exporter.pipeline.latest_arxiv_version", lambda _id: "v5")
    assert await resolve_arxiv_html_url("arXiv:2401.01234") == "https://arxiv.org/html/2401.01234v5"


async def test_resolve_html_url_rejects_garbage() -> None:
    with pytest.raises(ValueError):
        await resolve_arxiv_html_url("hello")


async def test_links_export(arxiv_html: str) -> None:
    async with ArxivExporter(arxiv_html) as exporter:
        artifact = await exporter.export("links")

    md = artifact.markdown
    assert artifact.filename == "arxiv_2401.01234_Sparse_Widgets_for_Dense_Problems_links.md"
    assert artifact.mime == "text/markdown"
    assert artifact.data == md.encode("utf-8")

    assert md.startswith("# Sparse Widgets for Dense Problems\n")
    assert "- Alice Zhang — Example University\n- Bob Lee — Example University" in md
    assert "## Abstract\nWe study widgets." in md
    assert (
        "**arXiv:** 2401.01234 (v2) — **abs:** https://arxiv.org/abs/2401.01234, "
        "**html:** https://arxiv.org/html/2401.01234v2, **pdf:** https://arxiv.org/pdf/2401.01234"
    ) in md
    assert "## Table of Contents\n[TOC]" in md

    assert "## 1 Introduction" in md
    assert md.count("Widgets $x^{2}$ are useful [^R2]. Visit the site.[^F1]") == 1
    assert "- First item\n  - Nested item\n- Second item" in md
    assert "$$\nE=mc^{2} \\tag{1}\n$$" in md
    assert f"![Overview of $f$.]({FIGURE_URL})\nOverview of $f$." in md
    assert '<path d="M0 0L10 10"></path></svg>\nA plot.' in md
    assert "| Method | Score |\n| --- | --- |\n| A | 1.0 |\n| B\\|C | 2.0 |" in md
    assert "```\ndef f():\n    return 1\n```" in md
    assert "### 2.1 Details\n\nDetail text." in md

    assert "[^F1]: Code is public.\n[^R2]: B. Author. Second paper. 2021. https://doi.org/10.1000/xyz" in md
    assert "[^R1]:" not in md
    assert md.rstrip().endswith(
        "## References\n[1] A. Author. First paper. 2020.\n"
        "[2] B. Author. Second paper. 2021. https://doi.org/10.1000/xyz"
    )
    assert md.index("## 1 Introduction") < md.index("## 2 Method") < md.index("[^F1]:") < md.index("## References")


async def test_bracket_citation_style(arxiv_html: str) -> None:
    config = Config(citation=CitationConfig(style="bracket+references"))
    async with ArxivExporter(arxiv_html, config=config) as exporter:
        md = await exporter.run_pipeline("links")
    assert "are useful [2]. Visit" in md
    assert "[^R2]" not in md
    assert "[^F1]: Code is public." in md


async def test_dedup_window_forgets_old_paragraphs() -> None:
    html = """
    <article class="ltx_document"><section class="ltx_section" id="S1">
    <h2 class="ltx_title">1 Intro</h2>
    <div class="ltx_para"><p class="ltx_p">Alpha.</p></div>
    <div class="ltx_para"><p class="ltx_p">Beta.</p></div>
    <div class="ltx_para"><p class="ltx_p">Alpha.</p></div>
    <div class="ltx_para"><p class="ltx_p">Beta.</p></div>
    </section></article>
    """
    async with ArxivExporter(html, config=Config(dedup_window=1)) as exporter:
        md = await exporter.run_pipeline("links")
    assert md.count("Alpha.") == 2
    assert md.count("Beta.") == 2

    async with ArxivExporter(html) as exporter:
        md = await exporter.run_pipeline("links")
    assert md.count("Alpha.") == 1


async def test_textbundle_export(arxiv_html: str, fast_config: Config) -> None:
    client = mock_client({FIGURE_URL: (200, image_bytes("PNG", (64, 32)), "image/png")})
    async with client, ArxivExporter(arxiv_html, PAGE_URL, fast_config, client) as exporter:
        artifact = await exporter.export("textbundle")

    assert artifact.filename == "arxiv_2401.01234_Sparse_Widgets_for_Dense_Problems_textbundle.textbundle"
    assert artifact.mime == "application/zip"
    assert artifact.asset_count == 2
    assert "![Overview of $f$.](assets/x1.png)" in artifact.markdown
    assert "![A plot.](assets/S2.F2.svg)" in artifact.markdown

    with zipfile.ZipFile(io.BytesIO(artifact.data)) as zf:
        assert zf.namelist() == ["text.md", "info.json", "assets/x1.png", "assets/S2.F2.svg"]
        text = zf.read("text.md").decode("utf-8")
        info = json.loads(zf.read("info.json"))
        svg = zf.read("assets/S2.F2.svg").decode("utf-8")
        png = zf.read("assets/x1.png")

    assert text == "\ufeff" + artifact.markdown
    assert info["sourceURL"] == PAGE_URL
    assert info["metadata"]["arxiv_id"] == "2401.01234"
    assert info["metadata"]["authors"][0]["name"] == "Alice Zhang"
    assert 'viewBox="0 0 10 10"' in svg
    assert png.startswith(b"\x89PNG")


async def test_base64_export_inlines_figure(arxiv_html: str, fast_config: Config) -> None:
    png = image_bytes("PNG", (16, 16))
    client = mock_client({FIGURE_URL: (200, png, "image/png")})
    async with client, ArxivExporter(arxiv_html, PAGE_URL, fast_config, client) as exporter:
        artifact = await exporter.export("base64")

    assert artifact.filename.endswith("_base64.md")
    assert "assets/x1.png" not in artifact.markdown
    prefix = "![Overview of $f$.](data:image/png;base64,"
    start = artifact.markdown.index(prefix) + len(prefix)
    payload = artifact.markdown[start:artifact.markdown.index(")", start)]
    assert base64.b64decode(payload).startswith(b"\x89PNG")
    assert "<svg" in artifact.markdown


async def test_missing_figure_keeps_remote_link(arxiv_html: str, fast_config: Config) -> None:
    client = mock_client({})
    async with client, ArxivExporter(arxiv_html, PAGE_URL, fast_config, client) as exporter:
        artifact = await exporter.export("base64")
    assert f"![Overview of $f$.]({FIGURE_URL})" in artifact.markdown


async def test_svg_inline_in_textbundle_when_embedding_disabled(arxiv_html: str) -> None:
    config = Config(
        http=HttpConfig(max_retry=1, retry_delay=0.0),
        images=ImagesConfig(target="png", embed_svg_in_textbundle=False),
    )
    client = mock_client({FIGURE_URL: (200, image_bytes(), "image/png")})
    async with client, ArxivExporter(arxiv_html, PAGE_URL, config, client) as exporter:
        artifact = await exporter.export("textbundle")
    assert artifact.asset_count == 1
    assert "<svg" in artifact.markdown


async def test_running_twice_gives_same_output(arxiv_html: str) -> None:
    async with ArxivExporter(arxiv_html) as exporter:
        first = await exporter.run_pipeline("links")
        second = await exporter.run_pipeline("links")
    assert first == second


async def test_rejects_non_arxiv_pages() -> None:
    async with ArxivExporter("<html><body><p>nope</p></body></html>") as exporter:
        with pytest.raises(DocumentStructureError):
            await exporter.run_pipeline("links")


async def test_rejects_unknown_mode(arxiv_html: str) -> None:
    async with ArxivExporter(arxiv_html) as exporter:
        with pytest.raises(ValueError, match="mode must be one of"):
            await exporter.export("pdf")


async def test_from_paper_downloads_page(arxiv_html: str, fast_config: Config) -> None:
    client = mock_client({PAGE_URL: (200, arxiv_html.encode("utf-8"), "text/html; charset=utf-8")})
    async with client:
        exporter = await ArxivExporter.from_paper("2401.01234v2", fast_config, client)
        async with exporter:
            md = await exporter.run_pipeline("links")
    assert exporter.adapter.page_url == PAGE_URL
    assert "# Sparse Widgets for Dense Problems" in md


async def test_from_paper_raises_fetch_error(fast_config: Config) -> None:
    client = mock_client({})
    async with client:
        with pytest.raises(FetchError, match="HTTP 404"):
            await ArxivExporter.from_paper("2401.01234v2", fast_config, client)
