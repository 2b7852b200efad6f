"""Read arXiv's LaTeXML HTML view into metadata, sections and bibliography."""

from __future__ import annotations

import copy
import logging
import re
from urllib.parse import urljoin

from bs4 import BeautifulSoup, NavigableString, Tag

from .models import Author, BibItem, FigureInfo, Footnote, MathExpr, PaperMeta, SectionBlock, TableInfo
from .textutil import absolutize, eq_loose, merge_soft_wraps, node_text, slug, split_person_list

logger = logging.getLogger(__name__)

SECTION_SELECTOR = (
    'section.ltx_section[id^="S"], '
    'section.ltx_subsection[id^="S"], '
    'section.ltx_subsubsection[id^="S"]'
)

NODE_SELECTOR = ", ".join([
    "div.ltx_para > p.ltx_p",
    "table.ltx_equation",
    'math[display="block"]',
    "figure.ltx_figure",
    "table.ltx_tabular",
    "ul",
    "ol",
    "pre.ltx_verbatim",
    ".ltx_listing pre",
    "div.ltx_note.ltx_role_footnote",
])

_ARXIV_PATH = re.compile(r"/html/(\d{4}\.\d{5})(v\d+)(?:/|$)")
_BIB_NUMBER = re.compile(r"(?:bib\.bib)?(\d{1,4})\b")
_BIB_HREF = re.compile(r"#(bib\.bib\d{1,4})\b")
_FOOTNOTE_ID = re.compile(r"(?:footnote|note)\.?(\d+)", re.IGNORECASE)
_MAX_TABLE_COLUMNS = 12


def parse_bib_number(s: str | None) -> int | None:
    if not s:
        return None
    m = _BIB_NUMBER.search(str(s))
    return int(m.group(1)) if m else None


def normalize_bib_href(href: str | None) -> str | None:
    if not href:
        return href
    m = _BIB_HREF.search(href)
    return f"#{m.group(1)}" if m else href


def strip_paren(s: str | None) -> str:
    if not s:
        return ""
    m = re.fullmatch(r"\(?\s*([^)]+?)\s*\)?", s.strip())
    return m.group(1) if m else s.strip()


def extract_tex(math_el: Tag | None) -> str:
    """TeX source of a MathML element: the x-tex annotation, else ``alttext``."""
    if math_el is None:
        return ""
    ann = math_el.find("annotation", attrs={"encoding": "application/x-tex"})
    if ann is not None and ann.get_text():
        return ann.get_text().strip()
    alt = math_el.get("alttext")
    return alt.strip() if alt else ""


class ArxivAdapter:
    """Structural reader for an arXiv ``/html/{id}v{n}`` page."""

    def __init__(
        self,
        html: str | BeautifulSoup,
        page_url: str | None = None,
        origin: str = "https://arxiv.org",
        footnote_prefix: str = "F",
    ):
        self.soup = html if isinstance(html, BeautifulSoup) else BeautifulSoup(html, "lxml")
        self.page_url = page_url
        self.footnote_prefix = footnote_prefix
        self.origin = origin.rstrip("/")
        self.base_href = self._base_href()
        self.arxiv_id, self.version = self._parse_id_version()
        self.links: dict[str, str | None] = {
            "abs": f"{self.origin}/abs/{self.arxiv_id}" if self.arxiv_id else None,
            "html": (
                f"{self.origin}/html/{self.arxiv_id}{self.version}"
                if self.arxiv_id and self.version
                else page_url
            ),
            "pdf": f"{self.origin}/pdf/{self.arxiv_id}" if self.arxiv_id else None,
        }

    # ------------------------------------------------------------------
    # Document level
    # ------------------------------------------------------------------

    def is_arxiv_html(self) -> bool:
        return self.soup.select_one("article.ltx_document, div.ltx_page_main, h1.ltx_title") is not None

    def get_meta(self) -> PaperMeta:
        title = node_text(self.soup.select_one("h1.ltx_title.ltx_title_document"))
        if not title and self.soup.title is not None:
            title = node_text(self.soup.title)
        return PaperMeta(
            title=merge_soft_wraps(title) or "Untitled",
            authors=self._parse_authors(),
            abstract=self._parse_abstract(),
            arxiv_id=self.arxiv_id,
            version=self.version,
            links=dict(self.links),
        )

    def collect_bibliography(self) -> list[BibItem]:
        items: list[BibItem] = []
        for li in self.soup.select('li.ltx_bibitem[id^="bib."]'):
            item_id = li.get("id", "")
            tag = node_text(li.select_one(".ltx_tag_bibitem"))
            num = parse_bib_number(item_id)
            if num is None:
                num = parse_bib_number(tag)
            if num is None:
                num = len(items) + 1

            blocks = [node_text(b) for b in li.select(".ltx_bibblock")]
            blocks = [b for b in blocks if b]
            text = merge_soft_wraps(" ".join(blocks) if blocks else node_text(li))

            doi = url = None
            for a in li.select("a[href]"):
                href = a.get("href", "")
                if href.lower().startswith("mailto:") or href.startswith("#"):
                    continue
                if re.match(r"^https?://", href, re.IGNORECASE):
                    url = url or href
                    if "doi.org" in href:
                        doi = href
                        break
            items.append(BibItem(num=num, id=item_id, text=text, doi=doi, url=url))

        unique: dict[int, BibItem] = {}
        for item in items:
            unique.setdefault(item.num, item)
        return sorted(unique.values(), key=lambda b: b.num)

    def build_citation_map(self, bib: list[BibItem]) -> dict[str, int]:
        cite_map: dict[str, int] = {}
        for item in bib:
            if not item.id:
                continue
            anchor = f"#{item.id}"
            cite_map[item.id] = item.num
            cite_map[anchor] = item.num
            if self.links.get("html"):
                cite_map[f"{self.links['html']}{anchor}"] = item.num

        for a in self.soup.select('a[href*="#bib."]'):
            href = a.get("href", "")
            key = normalize_bib_href(href)
            num = parse_bib_number(href)
            if key not in cite_map and num is not None:
                cite_map[key] = num
        return cite_map

    def walk_sections(self) -> list[SectionBlock]:
        doc_title = merge_soft_wraps(node_text(self.soup.select_one("h1.ltx_title.ltx_title_document")))
        seen: set[str] = set()
        out: list[SectionBlock] = []

        for sec in self.soup.select(SECTION_SELECTOR):
            heading = sec.select_one(":is(h2, h3, h4, h5, h6).ltx_title")
            title = merge_soft_wraps(node_text(heading) or "Section")
            if doc_title and eq_loose(title, doc_title):
                continue

            sec_id = sec.get("id", "")
            key = f"{sec_id}|{title.lower()}"
            if key in seen:
                continue
            seen.add(key)

            nodes = [n for n in sec.select(NODE_SELECTOR) if self._belongs_to(n, sec)]

            level = 2 + self._section_depth(sec)
            if heading is not None and re.fullmatch(r"h[2-6]", heading.name or ""):
                level = max(2, min(6, int(heading.name[1])))

            out.append(SectionBlock(level=level, title=title, anchor=sec_id or slug(title), nodes=nodes))
        return out

    # ------------------------------------------------------------------
    # Element level
    # ------------------------------------------------------------------

    def extract_math(self, node: Tag | None) -> MathExpr | None:
        if node is None:
            return None

        if node.name == "table" and "ltx_equation" in node.get("class", []):
            tex = extract_tex(node.select_one('math[display="block"]'))
            if not tex:
                return None
            return MathExpr(type="display", tex=tex, tag=self._equation_tag(node))

        math_el = node if node.name == "math" else node.find("math")
        if math_el is None:
            return None
        tex = extract_tex(math_el)
        if not tex:
            return None
        display = (math_el.get("display") or "").lower() == "block"
        tag = ""
        if display:
            table = math_el.css.closest("table.ltx_equation")
            if table is not None:
                tag = self._equation_tag(table)
        return MathExpr(type="display" if display else "inline", tex=tex, tag=tag)

    def extract_figure(self, fig: Tag | None, prefer_raster: bool = True) -> FigureInfo | None:
        if fig is None:
            return None
        fig_id = fig.get("id")

        caption = ""
        cap = fig.select_one("figcaption.ltx_caption")
        if cap is not None:
            cap = copy.copy(cap)
            for m in cap.find_all("math"):
                tex = extract_tex(m)
                m.replace_with(NavigableString(f"${tex}$" if tex else ""))
            caption = merge_soft_wraps(cap.get_text())
            caption = re.sub(r"^\s*Figure\s+\d+\s*[:.]\s*", "", caption, flags=re.IGNORECASE).strip()

        raster = vector = None
        img = fig.find("img")
        if img is not None:
            raw = img.get("src") or img.get("data-src")
            if raw:
                raster = FigureInfo(kind="img", src=self.absolutize(raw), caption=caption, id=fig_id)
        svg = fig.find("svg")
        if svg is not None:
            vector = FigureInfo(kind="svg", inline_svg=str(svg), caption=caption, id=fig_id)
        if prefer_raster:
            return raster or vector
        return vector or raster

    def extract_table(self, tbl: Tag | None) -> TableInfo:
        if tbl is None:
            return TableInfo()
        rows = tbl.find_all("tr")
        col_count = max((len(r.find_all(["td", "th"], recursive=False)) for r in rows), default=0)
        if col_count > _MAX_TABLE_COLUMNS:
            return TableInfo(html=str(tbl))

        headers: list[list[str]] = []
        thead = tbl.find("thead")
        if thead is not None:
            for tr in thead.find_all("tr"):
                headers.append(self._cells(tr.find_all(["th", "td"])))
        elif rows and rows[0].find("th") is not None:
            headers.append(self._cells(rows[0].find_all(["th", "td"])))

        if thead is not None:
            body_rows = tbl.select("tbody tr")
        else:
            body_rows = rows[1:] if headers else rows
        body = [self._cells(tr.find_all(["td", "th"])) for tr in body_rows]
        return TableInfo(headers=headers, rows=body)

    def extract_footnote(self, node: Tag | None) -> Footnote | None:
        if node is None:
            return None
        node_id = node.get("id", "")
        m = _FOOTNOTE_ID.search(node_id)
        if m:
            key = f"{self.footnote_prefix}{int(m.group(1))}"
        elif node_id:
            key = f"{self.footnote_prefix}_{node_id}"
        else:
            return None

        body = node.select_one(".ltx_note_content")
        if body is not None:
            body = copy.copy(body)
            for mark in body.select(".ltx_note_mark, .ltx_tag_note"):
                mark.decompose()
        else:
            body = node
        content = merge_soft_wraps(node_text(body))
        if not content:
            return None
        return Footnote(key=key, content=content)

    def absolutize(self, url: str | None) -> str | None:
        return absolutize(url, self.base_href, self.origin)

    # ------------------------------------------------------------------
    # Authors and abstract
    # ------------------------------------------------------------------

    def _parse_authors(self) -> list[Author]:
        box = self.soup.select_one("div.ltx_authors")
        if box is None:
            return []

        creators = box.select(".ltx_creator.ltx_role_author, .ltx_author, .ltx_creator")
        if not creators:
            creators = [box]

        authors: list[Author] = []
        for creator in creators:
            names = node_text(creator.select_one(".ltx_personname")) or node_text(creator)
            if not names:
                continue
            aff = merge_soft_wraps(node_text(creator.select_one(".ltx_contact.ltx_role_address, .ltx_affiliation")))
            mails = self._collect_emails(creator)
            split = split_person_list(names)

            if len(split) > 1 and len(mails) <= 1:
                authors.extend(Author(name=n, aff=aff) for n in split)
            elif len(split) > 1 and len(mails) >= len(split):
                authors.extend(Author(name=n, aff=aff, mail=mails[i]) for i, n in enumerate(split))
            else:
                name = split[0] if len(split) == 1 else merge_soft_wraps(names)
                authors.append(Author(name=name, aff=aff, mail=", ".join(mails)))
        return authors

    def _parse_abstract(self) -> str:
        box = self.soup.select_one("div.ltx_abstract")
        if box is None:
            return ""
        paras = [node_text(p) for p in box.select("p.ltx_p")]
        if not paras:
            paras = [node_text(p) for p in box.select(".ltx_para")]
        text = merge_soft_wraps("\n\n".join(p for p in paras if p))
        return re.sub(r"^\s*Abstract\.?\s*", "", text, flags=re.IGNORECASE).strip()

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _base_href(self) -> str:
        base = self.soup.find("base", href=True)
        fallback = self.page_url or f"{self.origin}/"
        raw = base["href"] if base is not None else ""
        if not raw:
            return fallback
        if re.match(r"^https?://", raw, re.IGNORECASE):
            return raw
        if raw.startswith("/"):
            return self.origin + raw
        return urljoin(fallback, raw)

    def _parse_id_version(self) -> tuple[str | None, str | None]:
        for candidate in (self.base_href, self.page_url or ""):
            m = _ARXIV_PATH.search(candidate)
            if m:
                return m.group(1), m.group(2)
        return None, None

    @staticmethod
    def _belongs_to(node: Tag, sec: Tag) -> bool:
        if node.css.closest(SECTION_SELECTOR) is not sec:
            return False
        if node.name == "math" and node.css.closest("table.ltx_equation") is not None:
            return False
        if node.name == "p" and node.find_parent("li") is not None:
            return False
        return True

    @staticmethod
    def _section_depth(sec: Tag) -> int:
        depth = 1
        for parent in sec.parents:
            if parent.name == "section" and any(
                c in parent.get("class", []) for c in ("ltx_section", "ltx_subsection", "ltx_subsubsection")
            ):
                depth += 1
        return depth

    @staticmethod
    def _equation_tag(table: Tag) -> str:
        return strip_paren(node_text(table.select_one(".ltx_tag_equation")))

    @staticmethod
    def _cells(cells) -> list[str]:
        return [merge_soft_wraps(node_text(td)) for td in cells]

    @staticmethod
    def _collect_emails(root: Tag) -> list[str]:
        found: list[str] = []
        for a in root.select('a[href^="mailto:"]'):
            raw = a.get("href", "")[len("mailto:"):]
            for part in re.split(r"[;,]", raw):
                part = part.strip()
                if part and part not in found:
                    found.append(part)
        return found
