from __future__ import annotations

from paper_exporter.config import Config, FiguresConfig, ImagesConfig, MathConfig
from paper_exporter.emitter import MarkdownEmitter
from paper_exporter.models import Author, BibItem, FigureInfo, Footnote, MathExpr, PaperMeta, TableInfo


def test_front_matter() -> None:
    emitter = MarkdownEmitter()
    emitter.emit_front_matter(PaperMeta(
        title="T",
        authors=[Author("A", aff="U", mail="a@u.org"), Author("B")],
        abstract="line one\nline two",
        arxiv_id="2401.01234",
        version="v1",
        links={"abs": "https://arxiv.org/abs/2401.01234", "html": None, "pdf": "https://arxiv.org/pdf/2401.01234"},
    ))
    assert emitter.head == [
        "# T",
        "",
        "## Authors",
        "- A — U; <a@u.org>",
        "- B",
        "",
        "## Abstract",
        "line one line two",
        "",
        "**arXiv:** 2401.01234 (v1) — **abs:** https://arxiv.org/abs/2401.01234, "
        "**pdf:** https://arxiv.org/pdf/2401.01234",
        "",
    ]


def test_publisher_front_matter() -> None:
    emitter = MarkdownEmitter()
    emitter.emit_front_matter(PaperMeta(
        title="T",
        authors=[Author("A<sup>1</sup>")],
        site="MDPI",
        article_id="10.3390/s1",
        affiliations=["<sup>1</sup> Lab"],
        highlights=["fast"],
        keywords=["x", "y"],
        journal="Sensors",
        volume="24",
        year="2024",
        links={"html": "https://www.mdpi.com/1/2/3/4/htm", "pdf": None, "doi": "https://doi.org/10.3390/s1"},
    ))
    assert emitter.head == [
        "# T",
        "",
        "## Authors",
        "- A<sup>1</sup>",
        "",
        "## Affiliations",
        "- <sup>1</sup> Lab",
        "",
        "## Highlights",
        "- fast",
        "",
        "## Keywords",
        "x, y",
        "",
        "**Sensors**, Volume 24, 2024",
        "",
        "**MDPI:** 10.3390/s1 — **html:** https://www.mdpi.com/1/2/3/4/htm, **doi:** https://doi.org/10.3390/s1",
        "",
    ]


def test_heading_levels_are_clamped() -> None:
    emitter = MarkdownEmitter()
    emitter.emit_heading(1, "Top")
    emitter.emit_heading(9, "Deep")
    assert emitter.body == ["## Top", "", "###### Deep", ""]


def test_display_math_tag_follows_config() -> None:
    inline = MarkdownEmitter()
    inline.emit_math(MathExpr("display", "E=mc^2", "3"))
    assert inline.body[0] == "$$\nE=mc^2 \\tag{3}\n$$"

    hidden = MarkdownEmitter(Config(math=MathConfig(display_tag="none")))
    hidden.emit_math(MathExpr("display", "E=mc^2", "3"))
    assert hidden.body[0] == "$$\nE=mc^2\n$$"


def test_figures() -> None:
    emitter = MarkdownEmitter(Config(figures=FiguresConfig(caption_style="italic")))
    emitter.emit_figure(FigureInfo(kind="img", src="https://x.org/a.png", caption="A plot."))
    emitter.emit_figure(FigureInfo(kind="svg", inline_svg="<svg></svg>", caption=""))
    assert emitter.body == ["![A plot.](https://x.org/a.png)", "*A plot.*", "", "<svg></svg>", ""]


def test_svg_without_inline_falls_back() -> None:
    emitter = MarkdownEmitter(Config(images=ImagesConfig(inline_svg_in_markdown=False)))
    emitter.emit_figure(FigureInfo(kind="svg", inline_svg="<svg></svg>", path="assets/f.svg", caption="c"))
    emitter.emit_figure(FigureInfo(kind="svg", caption="d"))
    assert emitter.body == ["![c](assets/f.svg)", "c", "", "<!-- SVG figure unavailable -->", "d", ""]


def test_table_pads_ragged_rows() -> None:
    emitter = MarkdownEmitter()
    emitter.emit_table(TableInfo(headers=[["a", "b"]], rows=[["1"], ["x|y", "2", "3"]]))
    assert emitter.body == [
        "| a | b |  |",
        "| --- | --- | --- |",
        "| 1 |  |  |",
        "| x\\|y | 2 | 3 |",
        "",
    ]


def test_wide_table_html_passthrough() -> None:
    emitter = MarkdownEmitter()
    emitter.emit_table(TableInfo(html="<table></table>"))
    assert emitter.body == ["<table></table>", ""]


def test_compose_orders_buffers() -> None:
    emitter = MarkdownEmitter()
    emitter.emit_front_matter(PaperMeta(title="T"))
    emitter.emit_paragraph("Body [^R1].")
    emitter.emit_block("```\nx  =  1\n```")
    emitter.emit_footnotes([Footnote("R1", "Ref one."), Footnote("F2", "")])
    emitter.emit_references([BibItem(1, "bib.bib1", "Ref one.", doi="https://doi.org/10.1/a", url="https://doi.org/10.1/a")])
    assert emitter.compose() == "\n".join([
        "# T",
        "",
        "Body [^R1].",
        "",
        "```\nx  =  1\n```",
        "",
        "[^R1]: Ref one.",
        "",
        "## References",
        "[1] Ref one. DOI: https://doi.org/10.1/a",
        "",
    ])
