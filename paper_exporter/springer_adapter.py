"""Read a Springer Link article page (link.springer.com/article/...)."""

from __future__ import annotations

import copy
import logging
import re

from bs4 import BeautifulSoup, NavigableString, Tag

from .arxiv_adapter import strip_paren
from .models import Author, BibItem, FigureInfo, MathExpr, PaperMeta, SectionBlock, TableInfo
from .postprocess import strip_tex_delims
from .publisher_adapter import (
    PublisherAdapter,
    best_from_srcset,
    find_doi,
    find_year,
    mathml_to_tex,
    parse_mathml,
    table_info,
)
from .textutil import merge_soft_wraps, node_text

logger = logging.getLogger(__name__)

_NODE_CLASSES = ("c-article-equation", "c-article-section__figure", "c-article-table")
_NODE_TAGS = ("p", "figure", "ul", "ol", "pre", "table")
_SUBHEADINGS = ("h3", "h4")
_SKIPPED_SECTIONS = {
    "abstract", "references", "bibliography", "rights and permissions", "about this article",
}
_CR_ID = re.compile(r"CR(\d{1,4})\b")


class SpringerAdapter(PublisherAdapter):
    site = "Springer"
    source = "springer"
    default_origin = "https://link.springer.com"
    hosts = ("link.springer.com",)
    ref_pattern = re.compile(r"^#ref-CR(\d{1,4})$")

    @property
    def article_id(self) -> str | None:
        return self.doi

    @property
    def doi(self) -> str | None:
        found = find_doi(self.meta_content("citation_doi")) or find_doi(
            node_text(self.soup.select_one(
                '[data-test="bibliographic-information__doi"] .c-bibliographic-information__value'
            ))
        )
        if found:
            return found
        link = self.soup.select_one('a[href*="doi.org/10."]')
        return find_doi(link.get("href")) if link is not None else None

    def is_article(self) -> bool:
        return self.soup.select_one("h1.c-article-title, .c-article-body, section[data-title]") is not None

    def get_meta(self) -> PaperMeta:
        title = node_text(self.soup.select_one("h1.c-article-title")) or self.meta_content("og:title")
        if not title and self.soup.title is not None:
            title = node_text(self.soup.title)

        first = self.meta_content("citation_firstpage")
        last = self.meta_content("citation_lastpage")
        return PaperMeta(
            title=merge_soft_wraps(title) or "Untitled",
            authors=self._parse_authors(),
            abstract=self._parse_abstract(),
            links=dict(self.links),
            site=self.site,
            article_id=self.article_id,
            doi=self.doi,
            journal=self.meta_content("citation_journal_title")
            or self.meta_content("citation_conference_title")
            or self.meta_content("citation_inbook_title"),
            volume=self.meta_content("citation_volume"),
            issue=self.meta_content("citation_issue"),
            pages=f"{first}-{last}" if first and last else first,
            year=find_year(self.meta_content("citation_publication_date") or self.meta_content("citation_date")),
            keywords=[node_text(li) for li in self.soup.select(".c-article-subject-list li") if node_text(li)],
        )

    def collect_bibliography(self) -> list[BibItem]:
        container = self.soup.select_one('section#Bib1, section[aria-labelledby="Bib1"], #Bib1')
        if container is None:
            return []
        items: dict[int, BibItem] = {}
        for index, li in enumerate(container.select("ol.c-article-references > li"), start=1):
            text_el = li.select_one(".c-article-references__text")
            text_id = text_el.get("id", "") if text_el is not None else ""
            m = _CR_ID.search(text_id)
            counter = re.search(r"\d+", li.get("data-counter", ""))
            num = int(m.group(1)) if m else int(counter.group(0)) if counter else index

            text = merge_soft_wraps(node_text(text_el) if text_el is not None else node_text(li))
            text = re.sub(r"\s*Google Scholar\s*$", "", text)

            doi = url = None
            for a in li.select("a[href]"):
                href = a.get("href", "")
                if not href.startswith("http") or "scholar.google" in href or "ams.org/mathscinet" in href:
                    continue
                if "doi.org/" in href:
                    doi = doi or href
                else:
                    url = url or href
            items.setdefault(num, BibItem(num=num, id=text_id or f"ref-CR{num}", text=text, doi=doi, url=url))
        return sorted(items.values(), key=lambda b: b.num)

    def walk_sections(self) -> list[SectionBlock]:
        out: list[SectionBlock] = []
        for h2 in self.soup.select("h2.c-article-section__title"):
            title = merge_soft_wraps(node_text(h2))
            if not title or title.lower() in _SKIPPED_SECTIONS:
                continue
            section = h2.find_parent("section") or h2.parent
            content = section.select_one(".c-article-section__content") or section

            lead: list[Tag] = []
            for child in content.find_all(True, recursive=False):
                if child.name in _SUBHEADINGS:
                    break
                lead.extend(self._nodes_in(child))
            out.append(SectionBlock(level=2, title=title, anchor=section.get("id") or h2.get("id") or "", nodes=lead))

            for sub in content.find_all(_SUBHEADINGS):
                nodes: list[Tag] = []
                for sibling in sub.find_next_siblings(True):
                    if sibling.name in _SUBHEADINGS:
                        break
                    nodes.extend(self._nodes_in(sibling))
                out.append(SectionBlock(
                    level=int(sub.name[1]),
                    title=merge_soft_wraps(node_text(sub)) or "Section",
                    anchor=sub.get("id") or "",
                    nodes=nodes,
                ))
        return out

    # ------------------------------------------------------------------
    # Element level
    # ------------------------------------------------------------------

    def classify(self, node: Tag) -> str:
        classes = node.get("class", [])
        if "c-article-equation" in classes:
            return "math"
        if "c-article-table" in classes or node.select_one('a[data-test="table-link"], a[href*="/tables/"]'):
            return "table"
        if "c-article-section__figure" in classes:
            return "figure"
        return super().classify(node)

    def prepare_inline(self, clone: Tag) -> None:
        for span in clone.select("span.mathjax-tex"):
            tex = strip_tex_delims(span.get_text(), "inline")
            span.replace_with(NavigableString(f"${tex}$" if tex else ""))
        for script in clone.select('script[type^="math/tex"]'):
            tex = strip_tex_delims(script.get_text(), "inline")
            script.replace_with(NavigableString(f"${tex}$" if tex else ""))
        super().prepare_inline(clone)

    def extract_math(self, node: Tag | None) -> MathExpr | None:
        if node is None:
            return None
        tex = ""
        script = node.select_one('script[type^="math/tex"]')
        if script is not None:
            tex = strip_tex_delims(script.get_text())
        if not tex:
            span = node.select_one(".mathjax-tex")
            tex = strip_tex_delims(span.get_text()) if span is not None else ""
        if not tex:
            mathml = node.select_one("[data-mathml]")
            tex = mathml_to_tex(parse_mathml(mathml.get("data-mathml")) if mathml is not None else node.find("math"))
        if not tex:
            return None
        tag = strip_paren(node_text(node.select_one(".c-article-equation__number")))
        return MathExpr(type="display", tex=tex, tag=tag)

    def extract_figure(self, node: Tag | None, prefer_raster: bool = True) -> FigureInfo | None:
        if node is None or self.classify(node) == "table":
            return None
        fig_id = node.get("id")
        caption = self._figure_caption(node)

        raster = None
        img = node.find("img")
        if img is not None:
            src = img.get("data-full-src") or best_from_srcset(img.get("srcset")) or img.get("src")
            if src:
                raster = FigureInfo(kind="img", src=self.absolutize(src), caption=caption, id=fig_id)
        if raster is None:
            source = node.select_one("picture source[srcset]")
            if source is not None:
                src = best_from_srcset(source.get("srcset"))
                raster = FigureInfo(kind="img", src=self.absolutize(src), caption=caption, id=fig_id)

        vector = None
        svg = node.find("svg")
        if svg is not None and not self._is_icon(svg):
            vector = FigureInfo(kind="svg", inline_svg=str(svg), caption=caption, id=fig_id)
        if prefer_raster:
            return raster or vector
        return vector or raster

    def extract_table(self, node: Tag | None) -> TableInfo | None:
        if node is None:
            return None
        table = node if node.name == "table" else node.find("table")
        if table is None:
            return None
        caption = merge_soft_wraps(node_text(node.select_one(
            '[data-test="table-caption"], .c-article-table__figcaption, figcaption, caption'
        )))
        return table_info(table, self.max_table_columns, caption, self.cell_text)

    def satellite_url(self, node: Tag) -> str | None:
        link = node.select_one(
            'a[data-test="img-link"], a[data-test="table-link"], a[href*="/figures/"], a[href*="/tables/"]'
        )
        return self.absolutize(link.get("href")) if link is not None and link.get("href") else None

    def figure_from_page(self, html: str, fallback: FigureInfo | None = None) -> FigureInfo | None:
        soup = BeautifulSoup(html, "lxml")
        src = None
        source = soup.select_one("main picture source[srcset]")
        if source is not None:
            src = best_from_srcset(source.get("srcset"))
        if not src:
            img = soup.select_one("main img[src]")
            src = img.get("src") if img is not None else None
        if not src:
            return fallback
        title = merge_soft_wraps(node_text(soup.select_one("h1.c-article-satellite-title")))
        description = self.clean_caption(node_text(soup.select_one(".c-article-figure-description")))
        caption = " ".join(p for p in (title, description) if p) or (fallback.caption if fallback else "")
        return FigureInfo(
            kind="img", src=self.absolutize(src), caption=caption, id=fallback.id if fallback else None
        )

    def table_from_page(self, html: str) -> TableInfo | None:
        soup = BeautifulSoup(html, "lxml")
        table = soup.select_one("main .c-article-table-container table") or soup.select_one(
            ".c-article-table-container table"
        )
        if table is None:
            return None
        caption = merge_soft_wraps(node_text(soup.select_one("h1.c-article-satellite-title")))
        return table_info(table, self.max_table_columns, caption, self.cell_text)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _links(self) -> dict[str, str | None]:
        doi = self.doi
        pdf = self.meta_content("citation_pdf_url")
        if not pdf:
            link = self.soup.select_one('a[data-test="pdf-link"]')
            pdf = link.get("href") if link is not None else None
        return {
            "html": self.page_url,
            "pdf": self.absolutize(pdf) if pdf else None,
            "doi": f"https://doi.org/{doi}" if doi else None,
        }

    def _parse_authors(self) -> list[Author]:
        authors: list[Author] = []
        for tag in self.soup.find_all("meta", attrs={"name": re.compile(r"^citation_author")}):
            value = merge_soft_wraps(tag.get("content", ""))
            if not value:
                continue
            name = tag.get("name")
            if name == "citation_author":
                authors.append(Author(name=value))
            elif authors and name == "citation_author_institution":
                current = authors[-1]
                current.aff = f"{current.aff}; {value}" if current.aff else value
            elif authors and name == "citation_author_email":
                authors[-1].mail = value
        return authors

    def _parse_abstract(self) -> str:
        paras = [node_text(p) for p in self.soup.select("section#Abs1 .c-article-section__content p")]
        if not paras:
            box = self.soup.select_one("#Abs1-content, section#Abs1")
            paras = [node_text(box)] if box is not None else []
        text = merge_soft_wraps(" ".join(p for p in paras if p))
        return re.sub(r"^\s*Abstract\.?\s*", "", text, flags=re.IGNORECASE).strip()

    def _figure_caption(self, node: Tag) -> str:
        label = merge_soft_wraps(node_text(node.select_one(
            "figcaption b.c-article-section__figure-caption, [data-test=\"figure-caption-text\"]"
        )))
        description = node.select_one('.c-article-section__figure-description, [data-test="bottom-caption"]')
        text = ""
        if description is not None:
            description = copy.copy(description)
            self.prepare_inline(description)
            text = self.clean_caption(node_text(description))
        return " ".join(p for p in (label, text) if p)

    def _nodes_in(self, el: Tag) -> list[Tag]:
        """``el`` itself when it is a content node, else the content nodes one level down."""
        if self._is_node(el):
            return [el]
        if el.name == "div":
            return [child for child in el.find_all(True, recursive=False) if self._is_node(child)]
        return []

    @staticmethod
    def _is_node(el: Tag) -> bool:
        classes = el.get("class", [])
        return el.name in _NODE_TAGS or any(c in classes for c in _NODE_CLASSES)

    @staticmethod
    def _is_icon(svg: Tag) -> bool:
        if "u-icon" in svg.get("class", []):
            return True
        for attr in ("width", "height"):
            value = str(svg.get(attr) or "").rstrip("px")
            if value.isdigit() and int(value) <= 32:
                return True
        return False
