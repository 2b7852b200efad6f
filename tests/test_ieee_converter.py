from __future__ import annotations

import pytest
from bs4 import BeautifulSoup

from paper_exporter.config import Config, MathConfig
from paper_exporter.ieee_adapter import IeeeMarkdownConverter, format_authors
from paper_exporter.ieee_fetcher import IeeeDocument

FIGURE = "https://ieeexplore.ieee.org/mediastore/IEEE/content/media/1/2/3/fig-1-source-large.gif"


@pytest.fixture
def converted(ieee_document: IeeeDocument) -> tuple[IeeeMarkdownConverter, str]:
    converter = IeeeMarkdownConverter(ieee_document)
    return converter, converter.convert()


def test_header(converted) -> None:
    _, md = converted
    assert md.startswith("# Fast Widgets for Edge Devices\n\n## Abstract\n\nWe propose *fast* widgets with cost $O(n)$.")
    assert "Carol Wu *Dept. of EE, Example Tech* [ORCID: 0000-0001-2345-6789](https://orcid.org/0000-0001-2345-6789)" in md
    assert "\n\nDan Ortiz\n\n" in md
    assert "\n".join([
        "- **Journal:** IEEE Transactions on Widgets",
        "- **Year:** 2023",
        "- **Volume:** 12",
        "- **Issue:** 3",
        "- **Pages:** 100-110",
        "- **DOI:** [10.1109/TW.2023.1234567](https://doi.org/10.1109/TW.2023.1234567)",
        "- **Article Number:** 1234567",
        "- **ISSN:** Print ISSN: 1234-5678",
    ]) in md
    assert "## Metrics\n\n- **Paper Citations:** 7\n- **Total Downloads:** 321" in md
    assert "## Funding\n\n- Example Science Foundation (Grant: ESF-42)" in md
    assert "## Keywords\n\n**IEEE Keywords:** Widgets, Edge computing" in md
    assert "## Table of Contents\n\n[TOC]" in md
    assert md.index("---") < md.index("## Keywords") < md.index("## SECTION I. Introduction")


def test_body(converted) -> None:
    converter, md = converted
    assert "## SECTION I. Introduction" in md
    assert "Deep models [^1] need data [^2]. See the note[^3]. The loss is $a < b$ in **bold** and *italic*." in md
    assert "hidden" not in md
    assert "$$\n\\begin{equation*} y = f(x) \\end{equation*}\n$$" in md
    assert "View Source" not in md
    assert "### A. Background\n\nEarlier work [^1] is cited again." in md
    assert "- first point\n- second point" in md
    assert "## SECTION II. Results" in md
    assert f"![Figure 1]({FIGURE})\n\n*Fig. 1. Pipeline overview.*" in md
    assert "| Model | Accuracy |\n| --- | --- |\n| Base | 90.1 |\n| **Ours** | 93.4 |" in md
    assert "## ACKNOWLEDGMENT\n\nWe thank the reviewers." in md

    assert converter.citations == {"ref1": 1, "ref3": 2, "fn1": 3}
    assert converter.images == [{"src": FIGURE, "alt": "", "id": 1}]


def test_back_matter(converted) -> None:
    _, md = converted
    assert "## Footnotes\n\n1. Code is available *online*." in md
    assert (
        '[1] A. Smith, "Widget theory," Proc. Widgets, 2019. DOI: https://doi.org/10.1000/w1 '
        "[Google Scholar](https://scholar.google.com/scholar?q=Widget+theory)"
    ) in md
    assert '[2] B. Jones, "Unused reference," 2018. IEEE: https://ieeexplore.ieee.org/document/111' in md
    assert (
        '[^1]: A. Smith, "Widget theory," Proc. Widgets, 2019. [DOI](https://doi.org/10.1000/w1) '
        "[Google Scholar](https://scholar.google.com/scholar?q=Widget+theory)"
    ) in md
    assert '[^2]: C. Brown, "Data matters," 2020.' in md
    assert "[^3]: Code is available *online*." in md
    assert '### Additional References\n\n2. B. Jones, "Unused reference," 2018.' in md
    assert (
        '## Citing Papers\n\n1. X. Li, Y. Chen. "Widgets revisited". *IEEE Access*. 2024. '
        "[Link](https://ieeexplore.ieee.org/document/999)"
    ) in md
    assert "\n\n\n" not in md


def test_minimal_document() -> None:
    doc = IeeeDocument(document_id="1", metadata={})
    md = IeeeMarkdownConverter(doc).convert()
    assert md.startswith("# Untitled Paper\n\n## Publication Information")
    assert "## References" not in md
    assert "[TOC]" not in md


def test_missing_article_container_gives_no_body() -> None:
    doc = IeeeDocument(document_id="1", content=BeautifulSoup("<div><p>x</p></div>", "lxml"), metadata={"title": "T"})
    md = IeeeMarkdownConverter(doc).convert()
    assert "x" not in md.split("---", 1)[1]


def test_bibr_without_anchor_uses_its_number() -> None:
    html = '<div id="BodyWrapper"><div id="article"><div class="section"><p>See <a ref-type="bibr">[4]</a>.</p></div></div></div>'
    doc = IeeeDocument(
        document_id="1",
        content=BeautifulSoup(html, "lxml"),
        references={"references": [{"order": "4", "text": "Four."}]},
        metadata={"title": "T"},
    )
    converter = IeeeMarkdownConverter(doc)
    md = converter.convert()
    assert "See [^1]." in md
    assert converter.citations == {"ref4": 1}
    assert "[^1]: Four." in md
    assert "Additional References" not in md


def test_math_normalization_can_be_disabled() -> None:
    doc = IeeeDocument(document_id="1", metadata={"title": "T", "abstract": "Energy \\(E\\) grows"})
    assert "Energy $E$ grows" in IeeeMarkdownConverter(doc).convert()
    config = Config(math=MathConfig(normalize_delimiters=False))
    assert "Energy \\(E\\) grows" in IeeeMarkdownConverter(doc, config).convert()


@pytest.mark.parametrize(
    "urls,expected",
    [
        (["/a/fig-2-small.gif", "/a/fig-2-source-large.gif"], "https://ieeexplore.ieee.org/a/fig-2-source-large.gif"),
        (["/a/eqinline-1.gif", "/a/plot-small.png"], "https://ieeexplore.ieee.org/a/plot-large.png"),
        (["//cdn.x.org/img/fig_3.png"], "https://cdn.x.org/img/fig_3.png"),
        (["/icons/icon.support.gif"], None),
        ([], None),
    ],
)
def test_select_best_figure_image(urls: list[str], expected) -> None:
    converter = IeeeMarkdownConverter(IeeeDocument(document_id="1"))
    assert converter.select_best_figure_image(urls) == expected


def test_format_authors() -> None:
    out = format_authors([
        {"name": "A B", "affiliation": ["X", "Y"]},
        {"firstName": "C", "lastName": "D", "affiliation": []},
    ])
    assert out == "A B\n*X; Y*\n\nC D"


def test_reference_list_sorts_orders_numerically() -> None:
    refs = [{"order": str(n), "text": f"Ref {n}."} for n in (3, 11, 1, 10, 2, 4, 5, 6, 7, 8, 9)]
    doc = IeeeDocument(document_id="1", references={"references": refs}, metadata={"title": "T"})
    listing = IeeeMarkdownConverter(doc).generate_references_list()
    orders = [int(line[1:line.index("]")]) for line in listing.splitlines() if line.startswith("[")]
    assert orders == list(range(1, 12))


def test_reference_without_order_goes_last() -> None:
    refs = [{"text": "no order"}, {"order": "1", "text": "First."}]
    doc = IeeeDocument(document_id="1", references={"references": refs}, metadata={"title": "T"})
    listing = IeeeMarkdownConverter(doc).generate_references_list()
    assert listing.index("[1] First.") < listing.index("no order")
