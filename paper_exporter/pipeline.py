"""End-to-end export controllers for arXiv, publisher article pages and IEEE Xplore papers."""

from __future__ import annotations

import asyncio
import base64
import copy
import logging
import re
from collections import deque

import arxiv
import httpx
from bs4 import NavigableString, Tag

from .arxiv_adapter import ArxivAdapter, normalize_bib_href, parse_bib_number
from .assets import AssetsManager
from .config import Config
from .emitter import MarkdownEmitter
from .errors import DocumentStructureError, FetchError
from .exporter import Exporter, suggest_filename
from .fetch import fetch_with_retry, make_client
from .ieee_adapter import IeeeMarkdownConverter
from .ieee_fetcher import IeeeDataFetcher, IeeeDocument, resolve_document_id
from .images import convert_gif, downscale_to_fit
from .mdpi_adapter import MdpiAdapter
from .models import BibItem, ExportArtifact, FigureInfo, Footnote
from .publisher_adapter import PublisherAdapter
from .sciencedirect_adapter import ScienceDirectAdapter
from .springer_adapter import SpringerAdapter
from .textutil import clean_noise_text, node_text

logger = logging.getLogger(__name__)

MODES = ("links", "base64", "textbundle")

MARKDOWN_MIME = "text/markdown"
TEXTBUNDLE_MIME = "application/zip"

_ARXIV_REF = re.compile(r"(\d{4}\.\d{4,5})(v\d+)?")
_VERSION_SUFFIX = re.compile(r"v(\d+)$")


def _check_mode(mode: str) -> None:
    if mode not in MODES:
        raise ValueError(f"mode must be one of {', '.join(MODES)}, got {mode!r}")


# ---------------------------------------------------------------------------
# arXiv
# ---------------------------------------------------------------------------

def parse_arxiv_ref(paper: str) -> tuple[str | None, str | None]:
    """``2509.03654v2``, ``arXiv:2509.03654`` or an arXiv URL -> (id, version)."""
    m = _ARXIV_REF.search(str(paper or ""))
    if not m:
        return None, None
    return m.group(1), m.group(2)


def latest_arxiv_version(arxiv_id: str) -> str | None:
    """Ask the arXiv API for the newest version suffix of ``arxiv_id``."""
    search = arxiv.Search(id_list=[arxiv_id])
    paper = next(arxiv.Client().results(search), None)
    if paper is None:
        return None
    m = _VERSION_SUFFIX.search(paper.entry_id)
    return f"v{m.group(1)}" if m else None


async def resolve_arxiv_html_url(paper: str, config: Config | None = None) -> str:
    config = config or Config()
    text = str(paper or "").strip()
    if re.match(r"^https?://", text) and "/html/" in text:
        return text

    arxiv_id, version = parse_arxiv_ref(text)
    if arxiv_id is None:
        raise ValueError(f"not an arXiv identifier: {paper!r}")
    if version is None:
        version = await asyncio.to_thread(latest_arxiv_version, arxiv_id)
        logger.info("latest version of %s: %s", arxiv_id, version or "unknown")
    return f"{config.arxiv_origin}/html/{arxiv_id}{version or ''}"


class ArticleExporter:
    """Shared state for exporters that walk an article page section by section.

    Subclasses provide ``run_pipeline``; figures, lists, citation markers,
    footnotes and paragraph dedup are handled here.
    """

    source = ""

    def __init__(self, adapter, config: Config | None = None, client: httpx.AsyncClient | None = None):
        self.config = config or Config()
        self.adapter = adapter
        self.assets = AssetsManager(self.config, client)
        self.exporter = Exporter(self.config)
        self.emitter = MarkdownEmitter(self.config)
        self.meta = None
        self._owned_client: httpx.AsyncClient | None = None
        self._cited: set[int] = set()
        self._footnotes: list[Footnote] = []
        self._seen: set[str] = set()
        self._recent: deque[str] = deque()

    @property
    def article_id(self) -> str | None:
        return self.adapter.article_id

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self.assets.aclose()
        if self._owned_client is not None:
            await self._owned_client.aclose()
            self._owned_client = None

    async def run_pipeline(self, mode: str = "links") -> str:
        raise NotImplementedError

    async def export(self, mode: str = "links") -> ExportArtifact:
        md = await self.run_pipeline(mode)
        title = self.meta.title if self.meta else None
        article_id = self.article_id
        assets = self.assets.list()

        if mode == "links":
            out = self.exporter.as_markdown_links(md)
            return ExportArtifact(
                suggest_filename(self.source, article_id, title, "links"), out.encode("utf-8"), MARKDOWN_MIME, out
            )
        if mode == "base64":
            out = self.exporter.as_markdown_base64(md, assets)
            return ExportArtifact(
                suggest_filename(self.source, article_id, title, "base64"),
                out.encode("utf-8"),
                MARKDOWN_MIME,
                out,
                len(assets),
            )
        data = self.exporter.as_textbundle(
            md, assets, meta=self.meta.to_dict(), source_url=self.adapter.links.get("html")
        )
        return ExportArtifact(
            suggest_filename(self.source, article_id, title, "textbundle", "textbundle"),
            data,
            TEXTBUNDLE_MIME,
            md,
            len(assets),
        )

    def _render_inline(self, node: Tag, cite_map: dict[str, int]) -> str:
        raise NotImplementedError

    # ------------------------------------------------------------------
    # Shared node handlers
    # ------------------------------------------------------------------

    async def _emit_figure(self, fig: FigureInfo | None, mode: str) -> None:
        if fig is None:
            return
        images = self.config.images

        if fig.kind == "img":
            if mode == "links":
                self.emitter.emit_figure(FigureInfo(kind="img", path=fig.src, caption=fig.caption))
                return
            result = await self.assets.fetch_raster(fig.src)
            self.emitter.emit_figure(
                FigureInfo(kind="img", path=result.get("asset_path") or result.get("path"), caption=fig.caption)
            )
            return

        if mode == "textbundle" and images.embed_svg_in_textbundle:
            result = self.assets.register_svg(fig.inline_svg or "", f"{fig.id}.svg" if fig.id else "figure.svg")
            self.emitter.emit_figure(FigureInfo(kind="svg", path=result["asset_path"], caption=fig.caption))
        else:
            self.emitter.emit_figure(FigureInfo(kind="svg", inline_svg=fig.inline_svg, caption=fig.caption))

    def _emit_list(self, node: Tag, cite_map: dict[str, int]) -> None:
        if node.find_parent("li") is not None:
            return
        lines = [line for line in self._render_list(node, cite_map) if self._remember(line)]
        if lines:
            self.emitter.emit_block("\n".join(lines))

    def _emit_code(self, node: Tag) -> None:
        code = node.get_text().rstrip()
        if code:
            self.emitter.emit_block(f"```\n{code}\n```")

    def _render_list(self, list_node: Tag, cite_map: dict[str, int], depth: int = 0) -> list[str]:
        ordered = list_node.name == "ol"
        lines: list[str] = []
        for index, li in enumerate(list_node.find_all("li", recursive=False), start=1):
            item = copy.copy(li)
            for sub in item.find_all(["ul", "ol"]):
                if not sub.decomposed:
                    sub.decompose()
            bullet = f"{index}. " if ordered else "- "
            lines.append(f"{'  ' * depth}{bullet}{self._render_inline(item, cite_map)}".rstrip())

            for sub in li.find_all(["ul", "ol"]):
                if sub.find_parent("li") is li:
                    lines.extend(self._render_list(sub, cite_map, depth + 1))
        return lines

    def _cite_marker(self, num: int) -> str:
        if self.config.citation.style.startswith("footnote"):
            return f"[^{self.config.citation.reference_prefix}{num}]"
        return f"[{num}]"

    def _reference_footnotes(self, bib: list[BibItem]) -> list[Footnote]:
        if not self.config.citation.style.startswith("footnote"):
            return []
        prefix = self.config.citation.reference_prefix
        lookup = {item.num: item for item in bib}
        out = []
        for num in sorted(self._cited):
            item = lookup.get(num)
            if item is None:
                continue
            content = item.text or ""
            if item.doi and item.doi not in content:
                content += f" DOI: {item.doi}"
            if item.url and item.url not in content:
                content += f" URL: {item.url}"
            out.append(Footnote(key=f"{prefix}{num}", content=content.strip()))
        return out

    def _finish(self, bib: list[BibItem], section_count: int) -> str:
        merged: dict[str, str] = {}
        for note in self._footnotes + self._reference_footnotes(bib):
            if note.key and note.content and note.key not in merged:
                merged[note.key] = note.content
        self.emitter.emit_footnotes([Footnote(k, v) for k, v in merged.items()])
        self.emitter.emit_references(bib)

        logger.info(
            "pipeline done sections=%d cited=%d assets=%d",
            section_count, len(self._cited), len(self.assets.list()),
        )
        return self.emitter.compose()

    # ------------------------------------------------------------------
    # Paragraph dedup
    # ------------------------------------------------------------------

    def _emit_paragraph_dedup(self, text: str) -> None:
        clean = clean_noise_text(text)
        if clean and self._remember(clean):
            self.emitter.emit_paragraph(clean)

    def _remember(self, text: str) -> bool:
        """Record a fingerprint; False when it is among the last ``dedup_window``."""
        key = clean_noise_text(text).lower()
        if not key or key in self._seen:
            return False
        self._seen.add(key)
        self._recent.append(key)
        if len(self._recent) > self.config.dedup_window:
            self._seen.discard(self._recent.popleft())
        return True

    def _reset(self) -> None:
        self.emitter = MarkdownEmitter(self.config)
        self.assets.clear()
        self._cited = set()
        self._footnotes = []
        self._seen = set()
        self._recent = deque()


class ArxivExporter(ArticleExporter):
    """Turns one arXiv HTML page into Markdown, Base64 Markdown or a TextBundle."""

    source = "arxiv"

    def __init__(
        self,
        html: str,
        page_url: str | None = None,
        config: Config | None = None,
        client: httpx.AsyncClient | None = None,
    ):
        config = config or Config()
        adapter = ArxivAdapter(html, page_url, config.arxiv_origin, config.citation.footnote_prefix)
        super().__init__(adapter, config, client)

    @property
    def article_id(self) -> str | None:
        return self.adapter.arxiv_id

    @classmethod
    async def from_paper(
        cls,
        paper: str,
        config: Config | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> "ArxivExporter":
        """Download the HTML view of ``paper`` (id or URL) and wrap it."""
        config = config or Config()
        url = await resolve_arxiv_html_url(paper, config)
        owned = client is None
        client = client or make_client(config.http)
        try:
            response = await fetch_with_retry(client, url, config.http.max_retry, config.http.retry_delay)
        except FetchError:
            if owned:
                await client.aclose()
            raise
        exporter = cls(response.text, str(response.url), config, client)
        if owned:
            exporter._owned_client = client
        return exporter

    async def run_pipeline(self, mode: str = "links") -> str:
        _check_mode(mode)
        if not self.adapter.is_arxiv_html():
            raise DocumentStructureError("page is not an arXiv HTML (LaTeXML) view")
        logger.info("pipeline start mode=%s id=%s", mode, self.adapter.arxiv_id)

        self._reset()
        adapter = self.adapter
        self.meta = adapter.get_meta()
        bib = adapter.collect_bibliography()
        cite_map = adapter.build_citation_map(bib)
        sections = adapter.walk_sections()

        self.emitter.emit_front_matter(self.meta)
        self.emitter.emit_toc_placeholder()

        for sec in sections:
            self.emitter.emit_heading(sec.level, sec.title)
            for node in sec.nodes:
                await self._emit_node(node, cite_map, mode)
        return self._finish(bib, len(sections))

    async def _emit_node(self, node: Tag, cite_map: dict[str, int], mode: str) -> None:
        name = node.name
        classes = node.get("class", [])

        if name == "p":
            self._emit_paragraph_dedup(self._render_inline(node, cite_map))
        elif (name == "table" and "ltx_equation" in classes) or (
            name == "math" and (node.get("display") or "").lower() == "block"
        ):
            self.emitter.emit_math(self.adapter.extract_math(node))
        elif name == "figure":
            await self._emit_figure(self.adapter.extract_figure(node, self.config.images.prefer_raster), mode)
        elif name == "table" and "ltx_tabular" in classes:
            self.emitter.emit_table(self.adapter.extract_table(node))
        elif name in ("ul", "ol"):
            self._emit_list(node, cite_map)
        elif name == "pre":
            self._emit_code(node)
        elif "ltx_note" in classes:
            note = self.adapter.extract_footnote(node)
            if note is not None:
                self._footnotes.append(note)
        else:
            self._emit_paragraph_dedup(node.get_text().strip())

    def _render_inline(self, node: Tag, cite_map: dict[str, int]) -> str:
        """Paragraph text with ``$tex$`` maths, citation markers and footnote markers."""
        clone = copy.copy(node)

        for m in clone.find_all("math"):
            if (m.get("display") or "").lower() == "block":
                continue
            math = self.adapter.extract_math(m)
            m.replace_with(NavigableString(f"${math.tex}$" if math else ""))

        for note in clone.select(".ltx_note.ltx_role_footnote"):
            footnote = self.adapter.extract_footnote(note)
            if footnote is None:
                note.decompose()
                continue
            self._footnotes.append(footnote)
            note.replace_with(NavigableString(f"[^{footnote.key}]"))

        # "[<a>1</a>, <a>2</a>]" -> markers only
        for cite in clone.select("cite"):
            if cite.select_one('a[href*="#bib."]') is None:
                continue
            for piece in list(cite.find_all(string=True, recursive=False)):
                if re.fullmatch(r"[\s\[\](),;]*", str(piece)):
                    piece.extract()

        for a in clone.select('a[href*="#bib."]'):
            href = a.get("href", "")
            num = cite_map.get(normalize_bib_href(href))
            if num is None:
                num = parse_bib_number(href)
            if num is None:
                a.replace_with(NavigableString(a.get_text()))
                continue
            self._cited.add(num)
            a.replace_with(NavigableString(self._cite_marker(num)))

        for a in clone.find_all("a"):
            a.replace_with(NavigableString(a.get_text()))

        return clean_noise_text(clone.get_text())


# ---------------------------------------------------------------------------
# Publisher article pages
# ---------------------------------------------------------------------------

PUBLISHERS: dict[str, type[PublisherAdapter]] = {
    "springer": SpringerAdapter,
    "sciencedirect": ScienceDirectAdapter,
    "mdpi": MdpiAdapter,
}

# "[[1], [2]]" or "([^ref-3])" -> bare markers
_BRACKETED_MARKERS = re.compile(r"[\[(]\s*((?:\[\^?[\w.-]+\][\s,;–-]*)+)[\])]")
_MARKER_GAP = re.compile(r"(?<=\])[\s,;–-]+(?=\[)")


def adapter_class_for_url(url: str | None) -> type[PublisherAdapter] | None:
    for adapter_cls in PUBLISHERS.values():
        if adapter_cls.matches(url):
            return adapter_cls
    return None


def tidy_citation_markers(text: str) -> str:
    return _BRACKETED_MARKERS.sub(lambda m: _MARKER_GAP.sub("", m.group(1)).strip(), text)


class PublisherExporter(ArticleExporter):
    """Turns a Springer, ScienceDirect or MDPI article page into the three export modes."""

    def __init__(
        self,
        adapter: PublisherAdapter,
        config: Config | None = None,
        client: httpx.AsyncClient | None = None,
    ):
        super().__init__(adapter, config, client)
        self.source = adapter.source

    @classmethod
    async def from_url(
        cls,
        url: str,
        config: Config | None = None,
        client: httpx.AsyncClient | None = None,
        html: str | None = None,
    ) -> "PublisherExporter":
        """Wrap the article at ``url``, downloading it unless ``html`` is given."""
        config = config or Config()
        adapter_cls = adapter_class_for_url(url)
        if adapter_cls is None:
            raise ValueError(f"not a Springer, ScienceDirect or MDPI article URL: {url!r}")
        owned = client is None
        client = client or make_client(config.http, referer=adapter_cls.default_origin + "/")
        page_url = url
        if html is None:
            try:
                response = await fetch_with_retry(client, url, config.http.max_retry, config.http.retry_delay)
            except FetchError:
                if owned:
                    await client.aclose()
                raise
            html, page_url = response.text, str(response.url)
        exporter = cls(adapter_cls(html, page_url), config, client)
        if owned:
            exporter._owned_client = client
        return exporter

    async def run_pipeline(self, mode: str = "links") -> str:
        _check_mode(mode)
        adapter = self.adapter
        if not adapter.is_article():
            raise DocumentStructureError(f"page is not a {adapter.site} article")
        logger.info("pipeline start site=%s mode=%s id=%s", adapter.site, mode, adapter.article_id)

        self._reset()
        self.meta = adapter.get_meta()
        bib = adapter.collect_bibliography()
        cite_map = adapter.build_citation_map(bib)
        sections = adapter.walk_sections()
        if not sections:
            logger.warning("no body sections found on %s", adapter.page_url)

        self.emitter.emit_front_matter(self.meta)
        self.emitter.emit_toc_placeholder()

        for sec in sections:
            self.emitter.emit_heading(sec.level, sec.title)
            for node in sec.nodes:
                await self._emit_node(node, cite_map, mode)
        return self._finish(bib, len(sections))

    async def _emit_node(self, node: Tag, cite_map: dict[str, int], mode: str) -> None:
        adapter = self.adapter
        kind = adapter.classify(node)

        if kind == "paragraph":
            self._emit_paragraph_dedup(self._render_inline(node, cite_map))
            for display in adapter.display_math_within(node):
                self.emitter.emit_math(adapter.extract_math(display))
        elif kind == "math":
            self.emitter.emit_math(adapter.extract_math(node))
        elif kind == "figure":
            fig = adapter.extract_figure(node, self.config.images.prefer_raster)
            if fig is None:
                html = await self._satellite_page(node)
                fig = adapter.figure_from_page(html) if html else None
            await self._emit_figure(fig, mode)
        elif kind == "table":
            await self._emit_table(node)
        elif kind == "list":
            self._emit_list(node, cite_map)
        elif kind == "code":
            self._emit_code(node)
        else:
            self._emit_paragraph_dedup(node_text(node))

    async def _emit_table(self, node: Tag) -> None:
        table = self.adapter.extract_table(node)
        if table is None:
            html = await self._satellite_page(node)
            table = self.adapter.table_from_page(html) if html else None
        if table is not None:
            self.emitter.emit_table(table)
            return
        url = self.adapter.satellite_url(node)
        if url:
            self.emitter.emit_paragraph(f"[Full size table]({url})")

    async def _satellite_page(self, node: Tag) -> str | None:
        url = self.adapter.satellite_url(node)
        if not url:
            return None
        http = self.config.http
        try:
            response = await fetch_with_retry(self.assets.client, url, http.max_retry, http.retry_delay)
        except FetchError as exc:
            logger.warning("satellite page unavailable: %s", exc)
            return None
        return response.text

    def _render_inline(self, node: Tag, cite_map: dict[str, int]) -> str:
        """Paragraph text with ``$tex$`` maths and citation markers."""
        clone = copy.copy(node)
        self.adapter.prepare_inline(clone)

        for a in clone.find_all("a"):
            num = self.adapter.citation_number(a, cite_map)
            if num is None:
                a.replace_with(NavigableString(a.get_text()))
                continue
            self._cited.add(num)
            a.replace_with(NavigableString(self._cite_marker(num)))

        return tidy_citation_markers(clean_noise_text(clone.get_text()))



# ---------------------------------------------------------------------------
# IEEE Xplore
# ---------------------------------------------------------------------------

async def fetch_ieee_document(
    url_or_id: str,
    client: httpx.AsyncClient,
    config: Config | None = None,
    metadata: dict | None = None,
) -> IeeeDocument:
    config = config or Config()
    text = str(url_or_id or "").strip()
    fetcher = IeeeDataFetcher(resolve_document_id(text, metadata) or "", client, config, metadata)

    if metadata is None and re.match(r"^https?://", text):
        fetcher.metadata = await fetcher.fetch_page_metadata(text)
        doc_id = resolve_document_id(text, fetcher.metadata)
        if doc_id:
            fetcher.document_id = doc_id

    if not fetcher.document_id:
        raise DocumentStructureError(f"cannot determine the IEEE document number from {url_or_id!r}")
    return await fetcher.fetch_all()


class IeeeExporter:
    """Packages a converted IEEE document in one of the three export modes."""

    def __init__(
        self,
        document: IeeeDocument,
        config: Config | None = None,
        client: httpx.AsyncClient | None = None,
        source_url: str | None = None,
    ):
        self.config = config or Config()
        self.document = document
        self.source_url = source_url or f"{self.config.ieee_origin}/document/{document.document_id}"
        self.assets = AssetsManager(self.config, client)
        self.exporter = Exporter(self.config)

    async def __aenter__(self) -> "IeeeExporter":
        return self

    async def __aexit__(self, *exc) -> None:
        await self.assets.aclose()

    def convert(self) -> tuple[str, list[dict]]:
        converter = IeeeMarkdownConverter(self.document, self.config)
        md = converter.convert()
        logger.info("converted document=%s images=%d", self.document.document_id, len(converter.images))
        return md, converter.images

    async def export(self, mode: str = "links") -> ExportArtifact:
        _check_mode(mode)
        md, images = self.convert()
        meta = self.document.metadata or {}
        title = meta.get("title") or meta.get("displayDocTitle")
        doc_id = self.document.document_id

        if mode == "links":
            return ExportArtifact(
                suggest_filename("ieee", doc_id, title, "links"), md.encode("utf-8"), MARKDOWN_MIME, md
            )
        if mode == "base64":
            out, embedded = await self.embed_base64(md, images)
            return ExportArtifact(
                suggest_filename("ieee", doc_id, title, "base64"), out.encode("utf-8"), MARKDOWN_MIME, out, embedded
            )
        data, text = await self.build_textbundle(md, images)
        return ExportArtifact(
            suggest_filename("ieee", doc_id, title, "textbundle", "textbundle"),
            data,
            TEXTBUNDLE_MIME,
            text,
            len(self.assets.list()),
        )

    async def embed_base64(self, md: str, images: list[dict]) -> tuple[str, int]:
        """Inline every figure as a data URL; oversize images keep their link."""
        logger.info(
            "stage:images start count=%d concurrency=%d target=%s",
            len(images), self.config.images.concurrency, self.config.images.target,
        )
        results = await asyncio.gather(*(self._data_url_for(img) for img in images))
        replacements = {img["src"]: url for img, url in zip(images, results) if url}
        for src in sorted(replacements, key=len, reverse=True):
            md = md.replace(src, replacements[src])
        logger.info("stage:images done embedded=%d/%d", len(replacements), len(images))
        return md, len(replacements)

    async def build_textbundle(self, md: str, images: list[dict]) -> tuple[bytes, str]:
        logger.info(
            "stage:images start count=%d concurrency=%d", len(images), self.config.images.concurrency
        )
        self.assets.clear()
        results = await asyncio.gather(*(self._bundle_asset(img) for img in images))
        replacements = {img["src"]: path for img, path in zip(images, results) if path}
        for src in sorted(replacements, key=len, reverse=True):
            md = md.replace(src, replacements[src])
        logger.info("stage:images done %d/%d", len(replacements), len(images))

        meta = self.document.metadata or {}
        info_meta = {
            "title": meta.get("title"),
            "authors": [
                a.get("name") or f"{a.get('firstName', '')} {a.get('lastName', '')}".strip()
                for a in meta.get("authors") or []
                if isinstance(a, dict)
            ],
            "doi": meta.get("doi"),
            "year": meta.get("publicationYear"),
            "journal": meta.get("publicationTitle"),
        }
        data = self.exporter.as_textbundle(md, self.assets.list(), meta=info_meta, source_url=self.source_url)
        return data, md

    async def _load_image(self, src: str) -> tuple[bytes, str] | None:
        images = self.config.images
        try:
            data, mime = await self.assets.download(src)
        except FetchError as exc:
            logger.warning("image unavailable: %s", exc)
            return None
        if "image/gif" in mime.lower() and images.gif_to_png:
            try:
                out = await asyncio.to_thread(convert_gif, data, images.target, images.max_dim, images.webp_quality)
            except (OSError, ValueError) as exc:
                logger.warning("gif conversion failed for %s: %s", src, exc)
                return None
            logger.debug("gif -> %s %dB -> %dB", out.mime, len(data), out.size)
            data, mime = out.data, out.mime
        return data, mime

    async def _data_url_for(self, image: dict) -> str | None:
        src = image["src"]
        loaded = await self._load_image(src)
        if loaded is None:
            return None
        data, mime = loaded
        images = self.config.images

        if len(data) > images.max_bytes:
            logger.info("image #%s too big %dB > %dB, downscaling", image.get("id"), len(data), images.max_bytes)
            try:
                out = await asyncio.to_thread(
                    downscale_to_fit,
                    data,
                    images.max_bytes,
                    images.max_dim,
                    images.min_dim,
                    images.downscale_step,
                    images.target,
                    images.webp_quality,
                )
                data, mime = out.data, out.mime
            except (OSError, ValueError) as exc:
                logger.warning("downscale failed for %s: %s", src, exc)

        if len(data) > images.max_bytes and images.fallback_to_link_if_too_big:
            logger.info("image #%s keeps its link (still too big)", image.get("id"))
            return None
        return f"data:{mime};base64,{base64.b64encode(data).decode('ascii')}"

    async def _bundle_asset(self, image: dict) -> str | None:
        loaded = await self._load_image(image["src"])
        if loaded is None:
            return None
        data, mime = loaded
        asset = self.assets.register_bytes(data, mime, f"image_{image.get('id')}", image["src"])
        return asset.path
