"""Read a ScienceDirect article page (www.sciencedirect.com/science/article/pii/...)."""

from __future__ import annotations

import copy
import logging
import re

from bs4 import NavigableString, Tag

from .arxiv_adapter import strip_paren
from .models import Author, BibItem, FigureInfo, MathExpr, PaperMeta, SectionBlock, TableInfo
from .publisher_adapter import PublisherAdapter, find_doi, find_year, mathml_to_tex, parse_mathml, table_info
from .textutil import merge_soft_wraps, node_text, slug

logger = logging.getLogger(__name__)

IMAGE_CDN = "https://ars.els-cdn.com/content/image"

_PII_PATH = re.compile(r"/science/article/(?:abs/)?pii/([A-Z0-9]+)", re.IGNORECASE)
_GRAPHIC = re.compile(r"^gr(\d+)(?:\.\w+)?$")
_FIG_LABEL = re.compile(r"^\s*(?:Fig\.?|Figure)\s*\d+[a-z]?\s*[.:]?\s*", re.IGNORECASE)
_EXCLUDED = ".Abstracts, .Keywords, .bibliography, #references, .Appendices"


class ScienceDirectAdapter(PublisherAdapter):
    site = "ScienceDirect"
    source = "sciencedirect"
    default_origin = "https://www.sciencedirect.com"
    hosts = ("sciencedirect.com",)
    ref_pattern = re.compile(r"^#bib(\d{1,4})$")

    @property
    def article_id(self) -> str | None:
        return self.pii

    @property
    def pii(self) -> str | None:
        for candidate in (self.page_url or "", self._canonical() or ""):
            m = _PII_PATH.search(candidate)
            if m:
                return m.group(1).upper()
        return self.meta_content("citation_pii") or None

    @property
    def doi(self) -> str | None:
        link = self.soup.select_one('a.doi[href*="doi.org"]')
        if link is not None:
            return find_doi(link.get("href"))
        return find_doi(self.meta_content("citation_doi"))

    def is_article(self) -> bool:
        return self.soup.select_one("span.title-text, #body, article .Body") is not None

    def get_meta(self) -> PaperMeta:
        title = node_text(self.soup.select_one(".title-text")) or self.meta_content("citation_title")
        journal, volume, issue, pages, year = self._parse_source()
        return PaperMeta(
            title=merge_soft_wraps(title) or "Untitled",
            authors=self._parse_authors(),
            abstract=self._parse_abstract(),
            links=dict(self.links),
            site=self.site,
            article_id=self.article_id,
            doi=self.doi,
            journal=journal,
            volume=volume,
            issue=issue,
            pages=pages,
            year=year,
            keywords=[node_text(k) for k in self.soup.select(".Keywords .keyword") if node_text(k)],
            highlights=[
                node_text(li) for li in self.soup.select(".abstract.author-highlights li") if node_text(li)
            ],
        )

    def collect_bibliography(self) -> list[BibItem]:
        container = self.soup.select_one("section.bibliography, #references")
        if container is None:
            return []
        items: dict[int, BibItem] = {}
        for index, li in enumerate(container.select("ol.references > li"), start=1):
            label = re.search(r"\d+", node_text(li.select_one("span.label")))
            num = int(label.group(0)) if label else index
            item_id = li.get("id") or f"bib{num}"

            parts = [node_text(li.select_one(sel)).rstrip(".") for sel in (".authors", ".title", ".host")]
            parts = [p for p in parts if p]
            text = ". ".join(parts) + "." if parts else node_text(li.select_one(".reference") or li)

            doi = url = None
            for a in li.select("a[href]"):
                href = a.get("href", "")
                if "doi.org/" in href:
                    doi = doi or href
                elif href.startswith("http") and not any(
                    host in href for host in ("scholar.google", "scopus.com", "sciencedirect.com/science?")
                ):
                    url = url or href
            items.setdefault(num, BibItem(num=num, id=item_id, text=merge_soft_wraps(text), doi=doi, url=url))
        return sorted(items.values(), key=lambda b: b.num)

    def citation_number(self, a: Tag, cite_map: dict[str, int]) -> int | None:
        content_id = a.get("data-xocs-content-id")
        if content_id and a.get("data-xocs-content-type") == "reference":
            num = cite_map.get(content_id)
            if num is None:
                num = self.parse_ref_number(f"#{content_id}")
            if num is not None:
                return num
        return super().citation_number(a, cite_map)

    def walk_sections(self) -> list[SectionBlock]:
        root = self.soup.select_one("#body") or self.soup
        out: list[SectionBlock] = []
        for sec in root.select('section[id^="s"]'):
            if sec.css.closest(_EXCLUDED) is not None:
                continue
            heading = sec.find(re.compile(r"^h[2-6]$"), recursive=False)
            if heading is None:
                continue
            title = merge_soft_wraps(node_text(heading))
            nodes = [child for child in sec.find_all(True, recursive=False) if self.classify(child) != "text"]
            out.append(SectionBlock(
                level=int(heading.name[1]),
                title=title,
                anchor=sec.get("id") or slug(title),
                nodes=nodes,
            ))
        return out

    # ------------------------------------------------------------------
    # Element level
    # ------------------------------------------------------------------

    def classify(self, node: Tag) -> str:
        classes = node.get("class", [])
        node_id = node.get("id", "")
        if node.name == "div" and re.match(r"^p\d", node_id):
            return "paragraph"
        if node.name == "figure":
            return "figure"
        if "tables" in classes:
            return "table"
        if "display" in classes or "formula" in classes:
            return "math"
        if node.name == "math" and (node.get("display") or "").lower() == "block":
            return "math"
        kind = super().classify(node)
        return "text" if kind == "math" else kind

    def prepare_inline(self, clone: Tag) -> None:
        for display in clone.select("div.display"):
            display.decompose()
        for span in clone.select("span.math"):
            tex = self._tex_of(span)
            span.replace_with(NavigableString(f"${tex}$" if tex else ""))
        super().prepare_inline(clone)

    def display_math_within(self, node: Tag) -> list[Tag]:
        return node.select("div.display")

    def extract_math(self, node: Tag | None) -> MathExpr | None:
        if node is None:
            return None
        tex = self._tex_of(node)
        if not tex:
            return None
        return MathExpr(type="display", tex=tex, tag=strip_paren(node_text(node.select_one(".label"))))

    def extract_figure(self, node: Tag | None, prefer_raster: bool = True) -> FigureInfo | None:
        if node is None:
            return None
        caption_el = node.select_one("span.captions, figcaption")
        caption = ""
        if caption_el is not None:
            caption_el = copy.copy(caption_el)
            self.prepare_inline(caption_el)
            caption = _FIG_LABEL.sub("", node_text(caption_el)).strip()

        src = None
        for a in node.select("a[href]"):
            href = a.get("href", "")
            if re.search(r"-gr\d+_lrg\.jpg$", href) or "high-res" in node_text(a).lower():
                src = href
                break
        if src is None:
            img = node.find("img")
            src = (img.get("src") or img.get("data-src")) if img is not None else None
        if not src:
            return None
        return FigureInfo(kind="img", src=self._image_src(src), caption=caption, id=node.get("id"))

    def extract_table(self, node: Tag | None) -> TableInfo | None:
        if node is None:
            return None
        table = node if node.name == "table" else node.find("table")
        if table is None:
            return None
        caption_el = node.select_one(".captions, caption")
        caption = ""
        if caption_el is not None:
            caption_el = copy.copy(caption_el)
            self.prepare_inline(caption_el)
            caption = merge_soft_wraps(node_text(caption_el))
        return table_info(table, self.max_table_columns, caption, self.cell_text)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _links(self) -> dict[str, str | None]:
        pii = self.pii
        doi = self.doi
        article = f"{self.origin}/science/article/pii/{pii}" if pii else self.page_url
        return {
            "html": article,
            "pdf": f"{article}/pdfft" if pii else None,
            "doi": f"https://doi.org/{doi}" if doi else None,
        }

    def _image_src(self, src: str) -> str | None:
        m = _GRAPHIC.match(src)
        if m and self.pii:
            return f"{IMAGE_CDN}/1-s2.0-{self.pii}-gr{m.group(1)}.jpg"
        return self.absolutize(src)

    def _tex_of(self, node: Tag) -> str:
        script = node.select_one('script[type^="math/mml"]')
        if script is not None:
            tex = mathml_to_tex(parse_mathml(script.string or script.get_text()))
            if tex:
                return tex
        holder = node.select_one("[data-mathml]")
        if holder is not None:
            tex = mathml_to_tex(parse_mathml(holder.get("data-mathml")))
            if tex:
                return tex
        return mathml_to_tex(node if node.name == "math" else node.find("math"))

    def _parse_authors(self) -> list[Author]:
        group = self.soup.select_one("#author-group, .AuthorGroups, .author-group")
        if group is None:
            return []
        affiliations: dict[str, str] = {}
        for dl in group.select("dl.affiliation"):
            code = re.sub(r"\s+", "", node_text(dl.select_one("dt sup") or dl.find("dt")))
            text = merge_soft_wraps(node_text(dl.find("dd")))
            if text:
                affiliations[code] = text

        authors: list[Author] = []
        for el in group.select('button[data-xocs-content-type="author"], a[href*="/author/"]'):
            given = node_text(el.select_one(".given-name"))
            surname = node_text(el.select_one(".surname"))
            name = merge_soft_wraps(f"{given} {surname}") or node_text(el)
            if not name:
                continue
            codes = [re.sub(r"\s+", "", node_text(s)) for s in el.select(".author-ref sup")]
            affs = [affiliations[c] for c in codes if c in affiliations]
            if not affs and len(affiliations) == 1:
                affs = list(affiliations.values())
            authors.append(Author(name=name, aff="; ".join(affs)))
        return authors

    def _parse_abstract(self) -> str:
        box = self.soup.select_one(".Abstracts .abstract.author") or self.soup.select_one("#abs0010")
        if box is None:
            return ""
        paras = [node_text(p) for p in box.select('div[id^="sp"], p')]
        if not paras:
            paras = [node_text(box)]
        return merge_soft_wraps(" ".join(p for p in paras if p))

    def _parse_source(self) -> tuple[str, str, str, str, str]:
        journal = merge_soft_wraps(node_text(self.soup.select_one(".publication-title-link")))
        info = merge_soft_wraps(node_text(self.soup.select_one(".publication-volume .text-xs, .text-xs")))
        volume = re.search(r"Volume\s+(\d+)", info)
        issue = re.search(r"Issue\s+(\d+)", info)
        pages = re.search(r"Pages?\s+([\w]+(?:\s*[-–]\s*[\w]+)?)", info)
        return (
            journal or self.meta_content("citation_journal_title"),
            volume.group(1) if volume else "",
            issue.group(1) if issue else "",
            re.sub(r"\s*[-–]\s*", "-", pages.group(1)) if pages else "",
            find_year(info),
        )
