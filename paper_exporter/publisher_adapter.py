"""Shared reading helpers for publisher article pages (Springer, ScienceDirect, MDPI)."""

from __future__ import annotations

import copy
import logging
import re
from urllib.parse import urlparse

from bs4 import BeautifulSoup, NavigableString, Tag

from .arxiv_adapter import extract_tex
from .models import BibItem, FigureInfo, MathExpr, PaperMeta, SectionBlock, TableInfo
from .textutil import absolutize, merge_soft_wraps, node_text

logger = logging.getLogger(__name__)

_DOI = re.compile(r"10\.\d{4,9}/[^\s\"'<>]+")
_YEAR = re.compile(r"\b(1[89]\d\d|20\d\d)\b")
_SRCSET_WIDTH = re.compile(r"(\d+(?:\.\d+)?)[wx]$")

_GREEK = dict(zip(
    "αβγδεζηθικλμνξπρστυφχψωϵϑϕΓΔΘΛΞΠΣΥΦΨΩ",
    (
        r"\alpha", r"\beta", r"\gamma", r"\delta", r"\varepsilon", r"\zeta", r"\eta", r"\theta",
        r"\iota", r"\kappa", r"\lambda", r"\mu", r"\nu", r"\xi", r"\pi", r"\rho", r"\sigma",
        r"\tau", r"\upsilon", r"\varphi", r"\chi", r"\psi", r"\omega", r"\epsilon", r"\vartheta",
        r"\phi", r"\Gamma", r"\Delta", r"\Theta", r"\Lambda", r"\Xi", r"\Pi", r"\Sigma",
        r"\Upsilon", r"\Phi", r"\Psi", r"\Omega",
    ),
))

_OPERATORS = {
    "∑": r"\sum", "∏": r"\prod", "∫": r"\int", "∮": r"\oint", "≤": r"\le", "≥": r"\ge",
    "≠": r"\ne", "≈": r"\approx", "≡": r"\equiv", "∼": r"\sim", "×": r"\times", "⋅": r"\cdot",
    "·": r"\cdot", "±": r"\pm", "∓": r"\mp", "∞": r"\infty", "→": r"\to", "←": r"\leftarrow",
    "⇒": r"\Rightarrow", "⇔": r"\Leftrightarrow", "∈": r"\in", "∉": r"\notin", "⊂": r"\subset",
    "⊆": r"\subseteq", "∪": r"\cup", "∩": r"\cap", "∀": r"\forall", "∃": r"\exists",
    "∂": r"\partial", "∇": r"\nabla", "…": r"\ldots", "⋯": r"\cdots", "−": "-", "∣": "|",
    "‖": r"\|", "〈": r"\langle", "〉": r"\rangle", "⟨": r"\langle", "⟩": r"\rangle",
    "⁡": "", "⁢": "", "⁣": "",
}

_FUNCTIONS = {"sin", "cos", "tan", "log", "ln", "exp", "max", "min", "lim", "det", "arg", "sup", "inf"}

_ACCENTS = {"^": r"\hat", "ˆ": r"\hat", "¯": r"\bar", "‾": r"\bar", "~": r"\tilde", "˜": r"\tilde",
            "→": r"\vec", "˙": r"\dot", "¨": r"\ddot"}


def find_doi(text: str | None) -> str | None:
    m = _DOI.search(str(text or ""))
    return m.group(0).rstrip(".,;)") if m else None


def find_year(text: str | None) -> str:
    m = _YEAR.search(str(text or ""))
    return m.group(1) if m else ""


def best_from_srcset(srcset: str | None) -> str | None:
    """Pick a ``/full/`` candidate, else the widest one, from a ``srcset`` value."""
    best, best_size = None, -1.0
    for part in str(srcset or "").split(","):
        bits = part.strip().split()
        if not bits:
            continue
        url = bits[0]
        if "/full/" in url:
            return url
        size = 0.0
        if len(bits) > 1:
            m = _SRCSET_WIDTH.search(bits[1])
            size = float(m.group(1)) if m else 0.0
        if size > best_size:
            best, best_size = url, size
    return best


def _symbol(text: str) -> str:
    text = text.strip()
    if text in _FUNCTIONS:
        return f"\\{text} "
    out = []
    for ch in text:
        cmd = _GREEK.get(ch) or _OPERATORS.get(ch)
        if cmd is None:
            out.append(ch)
        elif cmd.startswith("\\"):
            out.append(cmd + " ")
        else:
            out.append(cmd)
    return "".join(out)


def _group(node: Tag) -> str:
    tex = _mml(node).strip()
    return tex if len(tex) == 1 else f"{{{tex}}}"


def _mml(node) -> str:
    if isinstance(node, NavigableString):
        return _symbol(str(node)) if str(node).strip() else ""
    if not isinstance(node, Tag):
        return ""
    name = (node.name or "").split(":")[-1]
    kids = [c for c in node.children if isinstance(c, Tag)]

    if name in ("mi", "mn", "mo"):
        text = node.get_text().strip()
        if name == "mi" and len(text) > 1 and text not in _FUNCTIONS and not any(ch in _GREEK for ch in text):
            return rf"\mathrm{{{text}}}"
        return _symbol(text)
    if name in ("mtext", "ms"):
        text = node.get_text().strip()
        return rf"\text{{{text}}}" if text else ""
    if name in ("annotation", "annotation-xml", "none", "mprescripts"):
        return ""
    if name == "semantics":
        return _mml(kids[0]) if kids else ""
    if name == "mspace":
        return " "
    if name == "mfrac" and len(kids) == 2:
        return rf"\frac{{{_mml(kids[0]).strip()}}}{{{_mml(kids[1]).strip()}}}"
    if name == "msqrt":
        return rf"\sqrt{{{_join(kids).strip()}}}"
    if name == "mroot" and len(kids) == 2:
        return rf"\sqrt[{_mml(kids[1]).strip()}]{{{_mml(kids[0]).strip()}}}"
    if name == "msup" and len(kids) == 2:
        return f"{_group(kids[0])}^{{{_mml(kids[1]).strip()}}}"
    if name in ("msub", "munder") and len(kids) == 2:
        return f"{_group(kids[0])}_{{{_mml(kids[1]).strip()}}}"
    if name in ("msubsup", "munderover") and len(kids) == 3:
        return f"{_group(kids[0])}_{{{_mml(kids[1]).strip()}}}^{{{_mml(kids[2]).strip()}}}"
    if name == "mover" and len(kids) == 2:
        mark = kids[1].get_text().strip()
        if mark in _ACCENTS:
            return f"{_ACCENTS[mark]}{{{_mml(kids[0]).strip()}}}"
        return rf"\overset{{{_mml(kids[1]).strip()}}}{{{_mml(kids[0]).strip()}}}"
    if name == "mfenced":
        opening, closing = node.get("open", "("), node.get("close", ")")
        sep = (node.get("separators") or ",")[:1]
        return f"{opening}{sep.join(_mml(k).strip() for k in kids)}{closing}"
    if name == "mtable":
        rows = []
        for tr in node.find_all(["mtr", "mlabeledtr"], recursive=False):
            rows.append(" & ".join(_mml(td).strip() for td in tr.find_all("mtd", recursive=False)))
        return r"\begin{matrix}" + r" \\ ".join(rows) + r"\end{matrix}"
    return _join(node.children)


def _join(children) -> str:
    return "".join(_mml(c) for c in children)


def mathml_to_tex(math_el: Tag | None) -> str:
    """TeX for a MathML element: its TeX annotation when present, else a structural rendering."""
    if math_el is None:
        return ""
    tex = extract_tex(math_el)
    if tex:
        return tex
    return re.sub(r"\s{2,}", " ", _mml(math_el)).strip()


def parse_mathml(markup: str | None) -> Tag | None:
    if not markup:
        return None
    return BeautifulSoup(markup, "lxml").find(re.compile(r"(^|:)math$"))


def _span(value) -> int:
    text = str(value or "1").strip()
    return int(text) if text.isdigit() else 1


def has_spans(table: Tag) -> bool:
    return any(
        _span(cell.get("rowspan")) > 1 or _span(cell.get("colspan")) > 1
        for cell in table.find_all(["td", "th"])
    )


def clean_table_html(table: Tag) -> str:
    """Table markup without class, style, id and data attributes."""
    clone = copy.copy(table)
    for el in [clone, *clone.find_all(True)]:
        el.attrs = {
            k: v for k, v in el.attrs.items()
            if k in ("rowspan", "colspan", "href", "src", "alt", "scope")
        }
    return str(clone)


def table_info(table: Tag, max_cols: int = 12, caption: str = "", cell=node_text) -> TableInfo:
    """Markdown matrix for simple tables; cleaned HTML for spans, nesting or very wide ones.

    Without a ``thead`` the first row becomes the header row.
    """
    rows = table.find_all("tr")
    col_count = max((len(r.find_all(["td", "th"], recursive=False)) for r in rows), default=0)
    if has_spans(table) or col_count > max_cols or table.find("table") is not None:
        return TableInfo(html=clean_table_html(table), caption=caption)

    def cells(tr: Tag) -> list[str]:
        return [merge_soft_wraps(cell(td)) for td in tr.find_all(["td", "th"], recursive=False)]

    thead = table.find("thead")
    if thead is not None:
        headers = [cells(tr) for tr in thead.find_all("tr")]
        body = [cells(tr) for tr in rows if tr.find_parent("thead") is None]
    else:
        headers = [cells(rows[0])] if rows else []
        body = [cells(tr) for tr in rows[1:]]
    return TableInfo(headers=headers, rows=body, caption=caption)


class PublisherAdapter:
    """Structural reader for one publisher's article page.

    Subclasses set the class attributes and implement the document-level
    readers; element-level defaults work on plain HTML.
    """

    site = ""
    source = ""
    default_origin = ""
    hosts: tuple[str, ...] = ()
    ref_pattern = re.compile(r"(?!)")
    max_table_columns = 12

    def __init__(self, html: str | BeautifulSoup, page_url: str | None = None, origin: str | None = None):
        self.soup = html if isinstance(html, BeautifulSoup) else BeautifulSoup(html, "lxml")
        self.origin = (origin or self.default_origin).rstrip("/")
        self.page_url = page_url or self.meta_content("og:url") or self._canonical()
        self.base_href = self.page_url or f"{self.origin}/"
        self.links: dict[str, str | None] = self._links()

    @classmethod
    def matches(cls, url: str | None) -> bool:
        host = (urlparse(str(url or "")).hostname or "").lower()
        return any(host == h or host.endswith("." + h) for h in cls.hosts)

    # ------------------------------------------------------------------
    # Document level
    # ------------------------------------------------------------------

    @property
    def article_id(self) -> str | None:
        return None

    def is_article(self) -> bool:
        raise NotImplementedError

    def get_meta(self) -> PaperMeta:
        raise NotImplementedError

    def collect_bibliography(self) -> list[BibItem]:
        raise NotImplementedError

    def walk_sections(self) -> list[SectionBlock]:
        raise NotImplementedError

    def build_citation_map(self, bib: list[BibItem]) -> dict[str, int]:
        cite_map: dict[str, int] = {}
        for item in bib:
            if not item.id:
                continue
            cite_map[item.id] = item.num
            cite_map[f"#{item.id}"] = item.num
            if self.links.get("html"):
                cite_map[f"{self.links['html']}#{item.id}"] = item.num
        return cite_map

    def citation_number(self, a: Tag, cite_map: dict[str, int]) -> int | None:
        """Reference number an in-text anchor points at, or None for other links."""
        href = a.get("href") or ""
        if "#" not in href:
            return None
        fragment = "#" + href.split("#", 1)[1]
        num = cite_map.get(href, cite_map.get(fragment))
        if num is None:
            num = self.parse_ref_number(fragment)
        return num

    def parse_ref_number(self, s: str | None) -> int | None:
        m = self.ref_pattern.search(str(s or ""))
        return int(m.group(1)) if m else None

    # ------------------------------------------------------------------
    # Element level
    # ------------------------------------------------------------------

    def classify(self, node: Tag) -> str:
        """One of paragraph, math, figure, table, list, code or text."""
        name = node.name
        if name == "p":
            return "paragraph"
        if name == "math":
            return "math"
        if name == "figure":
            return "figure"
        if name == "table":
            return "table"
        if name in ("ul", "ol"):
            return "list"
        if name == "pre":
            return "code"
        return "text"

    def prepare_inline(self, clone: Tag) -> None:
        """Rewrite site markup inside a copied paragraph before its text is taken."""
        for m in clone.find_all(re.compile(r"(^|:)math$")):
            if (m.get("display") or "").lower() == "block":
                continue
            tex = mathml_to_tex(m)
            m.replace_with(NavigableString(f"${tex}$" if tex else ""))

    def display_math_within(self, node: Tag) -> list[Tag]:
        """Display formulas nested in a paragraph, emitted after its text."""
        return []

    def extract_math(self, node: Tag | None) -> MathExpr | None:
        if node is None:
            return None
        math_el = node if node.name == "math" else node.find("math")
        tex = mathml_to_tex(math_el)
        if not tex:
            return None
        return MathExpr(type="display", tex=tex)

    def extract_figure(self, node: Tag | None, prefer_raster: bool = True) -> FigureInfo | None:
        if node is None:
            return None
        caption = self.clean_caption(node_text(node.find("figcaption")))
        img = node.find("img")
        src = self.image_url(img) if img is not None else None
        if src:
            return FigureInfo(kind="img", src=src, caption=caption, id=node.get("id"))
        svg = node.find("svg")
        if svg is not None:
            return FigureInfo(kind="svg", inline_svg=str(svg), caption=caption, id=node.get("id"))
        return None

    def extract_table(self, node: Tag | None) -> TableInfo | None:
        if node is None:
            return None
        table = node if node.name == "table" else node.find("table")
        if table is None:
            return None
        caption = merge_soft_wraps(node_text(node.find(["caption", "figcaption"])))
        return table_info(table, self.max_table_columns, caption, self.cell_text)

    def satellite_url(self, node: Tag) -> str | None:
        """Link to a separate full-size figure or table page, when the site uses one."""
        return None

    def figure_from_page(self, html: str, fallback: FigureInfo | None = None) -> FigureInfo | None:
        return None

    def table_from_page(self, html: str) -> TableInfo | None:
        return None

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def absolutize(self, url: str | None) -> str | None:
        return absolutize(url, self.base_href, self.origin)

    def image_url(self, img: Tag) -> str | None:
        for attr in ("data-large", "data-original", "data-lsrc", "data-full-src"):
            if img.get(attr):
                return self.absolutize(img[attr])
        src = best_from_srcset(img.get("srcset")) or img.get("src") or img.get("data-src")
        return self.absolutize(src) if src else None

    def meta_content(self, name: str) -> str:
        tag = self.soup.find("meta", attrs={"name": name}) or self.soup.find("meta", attrs={"property": name})
        return merge_soft_wraps(tag.get("content", "")) if tag is not None else ""

    def meta_all(self, name: str) -> list[str]:
        return [
            merge_soft_wraps(tag.get("content", ""))
            for tag in self.soup.find_all("meta", attrs={"name": name})
            if tag.get("content")
        ]

    def cell_text(self, cell: Tag) -> str:
        clone = copy.copy(cell)
        self.prepare_inline(clone)
        return node_text(clone)

    @staticmethod
    def clean_caption(text: str | None) -> str:
        caption = merge_soft_wraps(text)
        return re.sub(r"^\s*(?:Figure|Fig\.?)\s*\d+[a-z]?\s*[.:]\s*", "", caption, flags=re.IGNORECASE).strip()

    def _canonical(self) -> str | None:
        link = self.soup.find("link", rel="canonical")
        return link.get("href") if link is not None else None

    def _links(self) -> dict[str, str | None]:
        return {"html": self.page_url}
