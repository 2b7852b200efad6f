"""Read an MDPI article page (www.mdpi.com/{issn}/{vol}/{issue}/{n}/htm)."""

from __future__ import annotations

import copy
import logging
import re

from bs4 import NavigableString, Tag

from .arxiv_adapter import strip_paren
from .models import Author, BibItem, FigureInfo, MathExpr, PaperMeta, SectionBlock, TableInfo
from .publisher_adapter import PublisherAdapter, find_doi, find_year, mathml_to_tex, table_info
from .textutil import absolutize, merge_soft_wraps, node_text, slug

logger = logging.getLogger(__name__)

CDN_ORIGIN = "https://pub.mdpi-res.com"

_LINK_LABELS = re.compile(r"^(?:Google Scholar|CrossRef|PubMed|Green Version|Scopus)$", re.IGNORECASE)
_MAX_TABLE_COLUMNS = 8


def _author_from_meta(value: str) -> str:
    """``Last, First`` -> ``First Last``."""
    if "," not in value:
        return value
    last, first = (part.strip() for part in value.split(",", 1))
    return f"{first} {last}".strip()


class MdpiAdapter(PublisherAdapter):
    site = "MDPI"
    source = "mdpi"
    default_origin = "https://www.mdpi.com"
    hosts = ("mdpi.com",)
    ref_pattern = re.compile(r"^#B(\d{1,4})(?:-|$)")
    max_table_columns = _MAX_TABLE_COLUMNS

    @property
    def article_id(self) -> str | None:
        return self.doi

    @property
    def doi(self) -> str | None:
        return find_doi(self.meta_content("citation_doi")) or find_doi(self.meta_content("dc.identifier"))

    def is_article(self) -> bool:
        return self.soup.select_one(".html-body, #html-abstract, h1.title") is not None

    def get_meta(self) -> PaperMeta:
        title = self.meta_content("citation_title") or node_text(self.soup.select_one("h1.title"))
        affiliations, notes = self._parse_affiliations()
        keywords = [node_text(a) for a in self.soup.select("#html-keywords a") if node_text(a)]
        return PaperMeta(
            title=merge_soft_wraps(title) or "Untitled",
            authors=self._parse_authors(),
            abstract=self._parse_abstract(),
            links=dict(self.links),
            site=self.site,
            article_id=self.article_id,
            doi=self.doi,
            journal=self.meta_content("citation_journal_title"),
            volume=self.meta_content("citation_volume"),
            issue=self.meta_content("citation_issue"),
            pages=self.meta_content("citation_firstpage"),
            year=find_year(self.meta_content("citation_publication_date") or self.meta_content("citation_date")),
            keywords=keywords,
            affiliations=affiliations,
            notes=notes,
        )

    def collect_bibliography(self) -> list[BibItem]:
        items: list[BibItem] = []
        for index, li in enumerate(self.soup.select("#html-references_list li"), start=1):
            item_id = li.get("id", "")
            doi = url = None
            clone = copy.copy(li)
            for a in clone.find_all("a"):
                href = a.get("href", "")
                if "doi.org/" in href:
                    doi = doi or href
                elif href.startswith("http") and "scholar.google" not in href:
                    url = url or href
                if _LINK_LABELS.match(node_text(a)):
                    a.decompose()
                else:
                    a.replace_with(NavigableString(a.get_text()))
            text = re.sub(r"\[\s*\]", "", node_text(clone))
            items.append(BibItem(
                num=self.parse_ref_number(f"#{item_id}") or index,
                id=item_id,
                text=merge_soft_wraps(text),
                doi=doi,
                url=url,
            ))
        unique: dict[int, BibItem] = {}
        for item in items:
            unique.setdefault(item.num, item)
        return sorted(unique.values(), key=lambda b: b.num)

    def walk_sections(self) -> list[SectionBlock]:
        body = self.soup.select_one(".html-body")
        if body is None:
            return []
        out: list[SectionBlock] = []
        for sec in body.select('section[id^="sec"]'):
            heading = sec.find(["h2", "h3", "h4"], recursive=False)
            if heading is None:
                header = sec.find("header", recursive=False)
                heading = header.find(["h2", "h3", "h4"]) if header is not None else None
            if heading is None:
                continue
            title = merge_soft_wraps(node_text(heading))
            depth = 0
            for parent in sec.parents:
                if parent is body:
                    break
                if parent.name == "section":
                    depth += 1
            nodes = [child for child in sec.find_all(True, recursive=False) if self.classify(child) != "text"]
            out.append(SectionBlock(level=2 + depth, title=title, anchor=sec.get("id") or slug(title), nodes=nodes))
        return out

    # ------------------------------------------------------------------
    # Element level
    # ------------------------------------------------------------------

    def classify(self, node: Tag) -> str:
        classes = node.get("class", [])
        if "html-p" in classes:
            return "paragraph"
        if "html-fig-wrap" in classes:
            return "figure"
        if "html-table-wrap" in classes:
            return "table"
        if "html-disp-formula-info" in classes:
            return "math"
        return super().classify(node)

    def prepare_inline(self, clone: Tag) -> None:
        for formula in clone.select(".html-disp-formula-info"):
            formula.decompose()
        for span in clone.select("span.html-italic"):
            span.replace_with(NavigableString(f"*{span.get_text().strip()}*"))
        for span in clone.select("span.html-bold"):
            span.replace_with(NavigableString(f"**{span.get_text().strip()}**"))
        super().prepare_inline(clone)

    def display_math_within(self, node: Tag) -> list[Tag]:
        return node.select(".html-disp-formula-info")

    def extract_math(self, node: Tag | None) -> MathExpr | None:
        if node is None:
            return None
        tex = mathml_to_tex(node if node.name == "math" else node.find("math"))
        if not tex:
            return None
        label = node.select_one(".l label, label") if node.name != "math" else None
        return MathExpr(type="display", tex=tex, tag=strip_paren(node_text(label)))

    def extract_figure(self, node: Tag | None, prefer_raster: bool = True) -> FigureInfo | None:
        if node is None:
            return None
        caption_el = node.select_one(".html-fig_caption, .html-fig_description, .html-caption")
        caption = ""
        if caption_el is not None:
            caption_el = copy.copy(caption_el)
            for label in caption_el.find_all(["b", "strong"]):
                if re.match(r"^\s*(?:Figure|Fig\.?)\s*\d+", label.get_text(), re.IGNORECASE):
                    label.decompose()
            self.prepare_inline(caption_el)
            caption = self.clean_caption(node_text(caption_el))
        img = node.find("img")
        src = self.image_url(img) if img is not None else None
        if not src:
            return None
        return FigureInfo(kind="img", src=src, caption=caption, id=node.get("id"))

    def extract_table(self, node: Tag | None) -> TableInfo | None:
        if node is None:
            return None
        table = node if node.name == "table" else node.find("table")
        if table is None:
            return None
        caption_el = node.select_one(".html-caption, .html-table_wrap_discription")
        caption = ""
        if caption_el is not None:
            caption_el = copy.copy(caption_el)
            self.prepare_inline(caption_el)
            caption = merge_soft_wraps(node_text(caption_el))
        if table.find(["figure", "img"]) is not None or table.find("math", attrs={"display": "block"}) is not None:
            return TableInfo(html=str(table), caption=caption)
        return table_info(table, self.max_table_columns, caption, self.cell_text)

    def absolutize(self, url: str | None) -> str | None:
        if url and url.startswith("/") and "/article_deploy/" in url:
            return CDN_ORIGIN + url
        return absolutize(url, self.base_href, self.origin)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _links(self) -> dict[str, str | None]:
        doi = self.doi
        pdf = self.meta_content("citation_pdf_url")
        return {
            "html": self.meta_content("citation_abstract_html_url") or self.page_url,
            "html_full": self.meta_content("citation_fulltext_html_url") or None,
            "pdf": pdf or None,
            "doi": f"https://doi.org/{doi}" if doi else None,
        }

    def _parse_authors(self) -> list[Author]:
        authors: list[Author] = []
        for drop in self.soup.select(".art-authors .profile-card-drop"):
            name = merge_soft_wraps(node_text(drop))
            if not name:
                continue
            sup = drop.find_next_sibling("sup")
            marks = re.sub(r"\s+", "", sup.get_text()) if sup is not None else ""
            authors.append(Author(name=f"{name}<sup>{marks}</sup>" if marks else name))
        if authors:
            return authors
        return [Author(name=_author_from_meta(value)) for value in self.meta_all("citation_author")]

    def _parse_affiliations(self) -> tuple[list[str], list[str]]:
        affiliations: list[str] = []
        notes: list[str] = []
        counter = 0
        for aff in self.soup.select(".art-affiliations .affiliation"):
            item = aff.select_one(".affiliation-item sup") or aff.select_one(".affiliation-item")
            key = re.sub(r"\s+", "", node_text(item))
            text = merge_soft_wraps(node_text(aff.select_one(".affiliation-name")))
            if not text:
                continue
            if not key:
                counter += 1
                key = str(counter)
            elif key.isdigit():
                counter = int(key)
            line = f"<sup>{key}</sup> {text}"
            (affiliations if key.isdigit() else notes).append(line)
        return affiliations, notes

    def _parse_abstract(self) -> str:
        paras = [node_text(p) for p in self.soup.select("#html-abstract .html-p")]
        text = merge_soft_wraps(" ".join(p for p in paras if p))
        return text or self.meta_content("dc.description")
