"""Convert an IEEE Xplore document (REST payloads + article HTML) to Markdown."""

from __future__ import annotations

import logging
import re

from bs4 import BeautifulSoup, Comment, NavigableString, Tag

from .config import Config
from .ieee_fetcher import IeeeDocument, reference_list
from .postprocess import (
    collapse_blank_lines,
    decode_entities_inside_math,
    fix_aligned_tag_blocks,
    fix_mojibake,
    merge_soft_wraps_markdown,
    normalize_math_delimiters,
    strip_tex_delims,
)

logger = logging.getLogger(__name__)

_IGNORED_IMAGE = re.compile(r"eqinline|icon\.support\.gif$|-small-small\.", re.IGNORECASE)
_FULL_FIGURE = re.compile(r"fig-\d+-source-", re.IGNORECASE)
_ANY_FIGURE = re.compile(r"/fig[-_]|-fig[-_]", re.IGNORECASE)
_SMALL_TOKEN = re.compile(r"(\b|-)small(\b|-)")


def _is_valid_list(value) -> bool:
    return isinstance(value, list) and len(value) > 0


def _strip_tags(s: str | None) -> str:
    return re.sub(r"<[^>]*>", "", str(s or ""))


def _reference_order(ref: dict) -> float:
    order = str(ref.get("order") or "").strip()
    return int(order) if order.isdigit() else float("inf")


def format_authors(authors: list[dict]) -> str:
    blocks = []
    for author in authors or []:
        text = author.get("name") or f"{author.get('firstName', '')} {author.get('lastName', '')}".strip()
        affiliations = author.get("affiliation")
        if _is_valid_list(affiliations):
            text += f"\n*{'; '.join(affiliations)}*"
        if author.get("orcid"):
            text += f"\n[ORCID: {author['orcid']}](https://orcid.org/{author['orcid']})"
        blocks.append(text)
    return "\n\n".join(blocks)


class IeeeMarkdownConverter:
    """Render one IeeeDocument as Markdown.

    Citations of references (``a[ref-type=bibr]``) and of publisher
    footnotes (``a[ref-type=fn]``) share one footnote counter, numbered in
    order of first appearance. Figure images are recorded in ``images`` so
    the packaging step can embed them.
    """

    def __init__(self, data: IeeeDocument, config: Config | None = None):
        self.data = data
        self.config = config or Config()
        self.origin = self.config.ieee_origin
        self.images: list[dict] = []
        self.citations: dict[str, int] = {}
        self.footnote_counter = 1

    def convert(self) -> str:
        md = self.generate_header()
        if self.data.metadata.get("keywords"):
            md += self.generate_keywords()
        if _is_valid_list(self.data.toc):
            md += self.generate_toc()
        if self.data.content is not None:
            md += self.convert_content()
        md += self.generate_publisher_footnotes()
        md += self.generate_references_list()
        md += self.generate_footnotes()
        if self.data.citations:
            md += self.generate_citations()

        md = fix_aligned_tag_blocks(md)
        if self.config.math.normalize_delimiters:
            md = normalize_math_delimiters(md)
        if self.config.math.decode_entities_inside_math:
            md = decode_entities_inside_math(md)
        md = md.replace("\\$", "$", 1)
        md = merge_soft_wraps_markdown(md)
        return collapse_blank_lines(md)

    # ------------------------------------------------------------------
    # Header
    # ------------------------------------------------------------------

    def generate_header(self) -> str:
        meta = self.data.metadata or {}
        out = f"# {meta.get('title') or meta.get('displayDocTitle') or 'Untitled Paper'}\n\n"

        if meta.get("abstract"):
            out += "## Abstract\n\n" + self.render_abstract(meta["abstract"]) + "\n\n"

        if _is_valid_list(meta.get("authors")):
            out += "## Authors\n\n" + format_authors(meta["authors"]) + "\n\n"

        out += "## Publication Information\n\n"
        info = []
        if meta.get("publicationTitle"):
            info.append(f"**Journal:** {meta['publicationTitle']}")
        if meta.get("publicationYear"):
            info.append(f"**Year:** {meta['publicationYear']}")
        if meta.get("volume"):
            info.append(f"**Volume:** {meta['volume']}")
        if meta.get("issue"):
            info.append(f"**Issue:** {meta['issue']}")
        if meta.get("startPage") and meta.get("endPage"):
            info.append(f"**Pages:** {meta['startPage']}-{meta['endPage']}")
        if meta.get("doi"):
            info.append(f"**DOI:** [{meta['doi']}](https://doi.org/{meta['doi']})")
        if meta.get("articleNumber"):
            info.append(f"**Article Number:** {meta['articleNumber']}")
        if _is_valid_list(meta.get("issn")):
            issns = ", ".join(f"{i.get('format')}: {i.get('value')}" for i in meta["issn"])
            info.append(f"**ISSN:** {issns}")
        out += "\n".join(f"- {line}" for line in info) + "\n\n"

        metrics = meta.get("metrics")
        if isinstance(metrics, dict):
            out += "## Metrics\n\n"
            lines = []
            if metrics.get("citationCountPaper"):
                lines.append(f"**Paper Citations:** {metrics['citationCountPaper']}")
            if metrics.get("citationCountPatent"):
                lines.append(f"**Patent Citations:** {metrics['citationCountPatent']}")
            if metrics.get("totalDownloads"):
                lines.append(f"**Total Downloads:** {metrics['totalDownloads']}")
            if lines:
                out += "\n".join(f"- {line}" for line in lines) + "\n\n"

        funding = (meta.get("fundingAgencies") or {}).get("fundingAgency")
        if _is_valid_list(funding):
            out += "## Funding\n\n"
            for item in funding:
                out += f"- {item.get('fundingName', '')}"
                if item.get("grantNumber"):
                    out += f" (Grant: {item['grantNumber']})"
                out += "\n"
            out += "\n"

        return out + "---\n\n"

    def render_abstract(self, raw: str) -> str:
        return decode_entities_inside_math(self.render_html(str(raw)))

    def generate_keywords(self) -> str:
        out = "## Keywords\n\n"
        keywords = self.data.metadata.get("keywords")
        if _is_valid_list(keywords):
            for group in keywords:
                if _is_valid_list(group.get("kwd")):
                    out += f"**{group.get('type', 'Keywords')}:** {', '.join(group['kwd'])}\n\n"
        return out

    def generate_toc(self) -> str:
        return "## Table of Contents\n\n[TOC]\n\n"

    # ------------------------------------------------------------------
    # Article body
    # ------------------------------------------------------------------

    def convert_content(self) -> str:
        article = self.data.content.select_one("#BodyWrapper #article")
        if article is None:
            logger.warning("IEEE article container not found for %s", self.data.document_id)
            return ""

        out = ""
        for section in article.select(".section"):
            if section.find_parent(class_="section") is None:
                out += self.process_section(section)

        for h3 in article.find_all("h3"):
            if h3.find_parent(class_="section") is not None:
                continue
            title = h3.get_text().strip()
            if "ACKNOWLEDGMENT" in title.upper():
                following = h3.find_next_sibling()
                if following is not None and following.name == "p":
                    out += f"\n## {title}\n\n{self.render_inline(following)}\n\n"
                break
        return out

    def process_section(self, section: Tag) -> str:
        out = ""
        header = section.find(class_="header", recursive=False)
        if header is not None:
            heading = header.find(["h2", "h3", "h4"])
            if heading is not None:
                title = heading.get_text().strip()
                kicker = header.select_one(".kicker")
                if kicker is not None:
                    kicker_text = kicker.get_text().strip()
                    if kicker_text and kicker_text not in title:
                        title = f"{kicker_text} {title}"
                marks = "###" if "section_2" in section.get("class", []) else "##"
                out += f"\n{marks} {title}\n\n"

        for child in section.find_all(True, recursive=False):
            if "header" in child.get("class", []):
                continue
            if "section_2" in child.get("class", []):
                out += self.process_section(child)
            else:
                out += self.process_element(child)
        return out

    def process_element(self, element: Tag) -> str:
        name = element.name
        classes = element.get("class", [])
        if name == "p":
            return self.process_paragraph(element)
        if name in ("ul", "ol"):
            return self.process_list(element)
        if name == "div":
            if "figure" in classes:
                return self.process_figure(element)
            if "section_2" in classes or "section" in classes:
                return self.process_section(element)
            return "".join(self.process_element(child) for child in element.find_all(True, recursive=False))
        if name == "h3":
            return f"\n### {element.get_text().strip()}\n\n"
        if name == "h4":
            return f"\n#### {element.get_text().strip()}\n\n"
        if name == "table":
            return self.process_table(element)
        if name == "disp-formula":
            return f"\n\n\n$$\n{strip_tex_delims(self._tex(element), 'display')}\n$$\n\n\n"
        if name == "inline-formula":
            return f"${strip_tex_delims(self._tex(element), 'inline')}$"
        if element.get_text().strip():
            return self.render_inline(element) + "\n\n"
        return ""

    def process_paragraph(self, p: Tag) -> str:
        figure = p.select_one(".figure")
        if figure is not None:
            return self.process_figure(figure)
        content = self.render_inline(p)
        if not content:
            return ""
        if "\n$$\n" in content:
            return f"\n{content}\n"
        return content + "\n\n"

    def process_list(self, list_el: Tag) -> str:
        ordered = list_el.name == "ol"
        out = "\n"
        for index, item in enumerate(list_el.find_all("li"), start=1):
            bullet = f"{index}. " if ordered else "- "
            out += f"{bullet}{self.render_inline(item)}\n"
        return out + "\n"

    def process_figure(self, figure: Tag) -> str:
        urls: list[str] = []
        for wrap in figure.select(".img-wrap"):
            a = wrap.find("a", href=True)
            if a is not None:
                urls.append(a["href"])
            img = wrap.find("img", src=True)
            if img is not None:
                urls.append(img["src"])

        out = ""
        best = self.select_best_figure_image(urls)
        if best:
            image = {"src": best, "alt": "", "id": len(self.images) + 1}
            self.images.append(image)
            out += f"\n![Figure {image['id']}]({image['src']})\n\n"
        else:
            logger.debug("figure without usable image skipped")

        caption = figure.select_one(".figcaption")
        if caption is not None:
            title_el = caption.select_one(".title")
            body_el = caption.find("fig")
            parts = [
                title_el.get_text().strip() if title_el is not None else "",
                self.render_inline(body_el) if body_el is not None else "",
            ]
            text = " ".join(p for p in parts if p)
            if text:
                out += f"*{text}*\n\n"
        return out

    def process_table(self, table: Tag) -> str:
        thead = table.find("thead")
        if thead is not None:
            rows = thead.find_all("tr")
            header_cells = rows[-1].find_all(["th", "td"]) if rows else []
        else:
            first = table.find("tr")
            header_cells = first.find_all(["th", "td"], recursive=False) if first is not None else []
        if not header_cells:
            return ""

        header = [self.render_inline(c) for c in header_cells]
        out = "\n"
        out += f"| {' | '.join(header)} |\n"
        out += f"| {' | '.join('---' for _ in header)} |\n"

        body_rows = table.select("tbody tr")
        if not body_rows:
            body_rows = [tr for tr in table.find_all("tr") if tr.find_parent("thead") is None]
            if thead is None:
                body_rows = body_rows[1:]
        for tr in body_rows:
            cells = [self.render_inline(td) for td in tr.find_all(["td", "th"], recursive=False)]
            if cells:
                out += f"| {' | '.join(cells)} |\n"
        return out + "\n"

    # ------------------------------------------------------------------
    # Figure images
    # ------------------------------------------------------------------

    def sanitize_image_href(self, href: str) -> str:
        url = href or ""
        if url.startswith("//"):
            url = "https:" + url
        elif url.startswith("/"):
            url = self.origin + url
        return _SMALL_TOKEN.sub(lambda m: f"{m.group(1)}large{m.group(2)}", url)

    def select_best_figure_image(self, urls: list[str]) -> str | None:
        candidates = [
            self.sanitize_image_href(u)
            for u in urls
            if u and not _IGNORED_IMAGE.search(u)
        ]
        candidates = [u for u in candidates if u and not _IGNORED_IMAGE.search(u)]
        for u in candidates:
            if _FULL_FIGURE.search(u):
                return u
        for u in candidates:
            if _ANY_FIGURE.search(u):
                return u
        return candidates[0] if candidates else None

    # ------------------------------------------------------------------
    # Inline rendering
    # ------------------------------------------------------------------

    def render_html(self, html: str) -> str:
        fragment = BeautifulSoup(f"<div>{html}</div>", "lxml").div
        return self.render_inline(fragment)

    def render_inline(self, node: Tag | None) -> str:
        """Flatten an element to Markdown text with math, citations and emphasis."""
        if node is None:
            return ""
        text = "".join(self._render_children(node))
        text = re.sub(r"\bView Source\b", "", text, flags=re.IGNORECASE)
        text = re.sub(r"[ \t]+\n", "\n", text)
        text = re.sub(r"\n[ \t]+", "\n", text)
        text = re.sub(r"\n{3,}", "\n\n", text)
        return text.strip()

    def _render_children(self, node: Tag):
        for child in node.children:
            if isinstance(child, Comment):
                continue
            if isinstance(child, NavigableString):
                yield str(child)
            elif isinstance(child, Tag):
                yield self._render_tag(child)

    def _render_tag(self, tag: Tag) -> str:
        name = tag.name
        classes = tag.get("class", [])
        if name == "span" and "tex2jax_ignore" in classes:
            return ""
        if name == "a":
            ref_type = tag.get("ref-type")
            if ref_type == "bibr":
                anchor = tag.get("anchor")
                if not anchor:
                    digits = re.search(r"\d+", tag.get_text())
                    if not digits:
                        return tag.get_text()
                    anchor = f"ref{digits.group(0)}"
                return f"[^{self.get_or_create_footnote(anchor)}]"
            if ref_type == "fn" and tag.get("anchor"):
                return f"[^{self.get_or_create_footnote(tag['anchor'])}]"
        if name == "disp-formula":
            return f"\n\n\n$$\n{strip_tex_delims(self._tex(tag), 'display')}\n$$\n\n\n"
        if name == "inline-formula":
            return f"${strip_tex_delims(self._tex(tag), 'inline')}$"
        inner = "".join(self._render_children(tag))
        if name in ("b", "strong") and inner.strip():
            return f"**{inner}**"
        if name in ("i", "em") and inner.strip():
            return f"*{inner}*"
        if name == "br":
            return "\n"
        return inner

    @staticmethod
    def _tex(formula: Tag) -> str:
        tex = formula.find("tex-math")
        return tex.get_text() if tex is not None else ""

    def get_or_create_footnote(self, ref_id: str) -> int:
        if ref_id not in self.citations:
            self.citations[ref_id] = self.footnote_counter
            self.footnote_counter += 1
        return self.citations[ref_id]

    # ------------------------------------------------------------------
    # Back matter
    # ------------------------------------------------------------------

    def _sorted_publisher_footnotes(self) -> list[dict]:
        def key(fn: dict):
            try:
                return float(fn.get("label") or fn.get("id") or 1)
            except (TypeError, ValueError):
                return float("inf")
        return sorted((fn for fn in self.data.footnotes if isinstance(fn, dict)), key=key)

    def generate_publisher_footnotes(self) -> str:
        items = self._sorted_publisher_footnotes()
        if not items:
            return ""
        out = "\n## Footnotes\n\n"
        for i, fn in enumerate(items, start=1):
            label = str(fn.get("label") or fn.get("id") or i)
            text = self.render_html(fix_mojibake(fn.get("text") or ""))
            out += f"{label}. {text}\n\n"
        return out

    def generate_references_list(self) -> str:
        refs = reference_list(self.data.references)
        if not refs:
            return ""
        out = "\n## References\n\n"
        for ref in sorted(refs, key=_reference_order):
            line = f"[{ref.get('order')}] {_strip_tags(ref.get('text'))}"
            links = ref.get("links") or {}
            if links.get("crossRefLink"):
                line += f" DOI: {links['crossRefLink']}"
            elif links.get("documentLink"):
                line += f" IEEE: {self.origin}{links['documentLink']}"
            if ref.get("googleScholarLink"):
                line += f" [Google Scholar]({ref['googleScholarLink']})"
            out += line + "\n\n"
        return out

    @staticmethod
    def _reference_ids(ref: dict) -> list[str]:
        ids = [f"ref{ref.get('order')}", str(ref.get("order")), ref.get("id"), ref.get("refId")]
        return [str(i) for i in ids if i is not None]

    def generate_footnotes(self) -> str:
        refs = reference_list(self.data.references)
        publisher = {
            str(fn.get("id")): fn for fn in self.data.footnotes if isinstance(fn, dict) and fn.get("id")
        }
        if not refs and not (publisher and self.citations):
            return ""

        ref_map: dict[str, dict] = {}
        for ref in refs:
            for ref_id in self._reference_ids(ref):
                ref_map[ref_id] = ref

        out = "\n## Reference Footnotes\n\n"
        for ref_id, number in sorted(self.citations.items(), key=lambda item: item[1]):
            ref = ref_map.get(ref_id)
            if ref is not None:
                line = f"[^{number}]: {_strip_tags(ref.get('text'))}"
                links = ref.get("links") or {}
                if links.get("crossRefLink"):
                    line += f" [DOI]({links['crossRefLink']})"
                elif links.get("documentLink"):
                    line += f" [IEEE]({self.origin}{links['documentLink']})"
                if ref.get("googleScholarLink"):
                    line += f" [Google Scholar]({ref['googleScholarLink']})"
                out += line + "\n\n"
            elif ref_id in publisher:
                text = self.render_html(fix_mojibake(publisher[ref_id].get("text") or ""))
                out += f"[^{number}]: {text}\n\n"

        uncited = [
            ref for ref in refs
            if not any(ref_id in self.citations for ref_id in self._reference_ids(ref))
        ]
        if uncited:
            out += "\n### Additional References\n\n"
            for ref in uncited:
                out += f"{ref.get('order')}. {_strip_tags(ref.get('text'))}\n\n"
        return out

    def generate_citations(self) -> str:
        data = self.data.citations
        citing = None
        if isinstance(data, dict) and _is_valid_list(data.get("paperCitations")):
            citing = data["paperCitations"]
        elif _is_valid_list(data):
            citing = data
        elif isinstance(data, dict) and _is_valid_list(data.get("citations")):
            citing = data["citations"]
        if not citing:
            logger.debug("no citing papers in citations payload")
            return ""

        out = "\n## Citing Papers\n\n"
        for index, citation in enumerate(citing, start=1):
            line = f"{index}. "
            if _is_valid_list(citation.get("authors")):
                line += ", ".join(str(a) for a in citation["authors"]) + ". "
            if citation.get("title"):
                line += f'"{citation["title"]}". '
            if citation.get("publicationTitle"):
                line += f"*{citation['publicationTitle']}*. "
            if citation.get("year"):
                line += f"{citation['year']}. "
            links = citation.get("links") or {}
            if links.get("documentLink"):
                line += f"[Link]({self.origin}{links['documentLink']})"
            out += line.rstrip() + "\n\n"
        return out
