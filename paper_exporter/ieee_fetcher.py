"""Collect an IEEE Xplore document from the site's REST endpoints."""

from __future__ import annotations

import asyncio
import json
import logging
import re
from dataclasses import dataclass, field
from typing import Any

import httpx
from bs4 import BeautifulSoup

from .config import Config
from .errors import DocumentStructureError, FetchError
from .fetch import fetch_json, fetch_text

logger = logging.getLogger(__name__)

_DOCUMENT_PATH = re.compile(r"/document/(\d+)")
_XPL_METADATA = re.compile(r"xplGlobal\.document\.metadata\s*=\s*")


@dataclass
class IeeeDocument:
    document_id: str
    content: BeautifulSoup | None = None
    references: dict | None = None
    toc: Any = None
    metadata: dict = field(default_factory=dict)
    citations: Any = None
    footnotes: list = field(default_factory=list)


def resolve_document_id(url_or_id: str | None, metadata: dict | None = None) -> str | None:
    """Document number from page metadata, a ``/document/N`` URL, or a bare number."""
    if metadata and metadata.get("articleNumber"):
        return str(metadata["articleNumber"])
    text = str(url_or_id or "").strip()
    m = _DOCUMENT_PATH.search(text)
    if m:
        return m.group(1)
    if text.isdigit():
        return text
    return None


def reference_list(references) -> list:
    if isinstance(references, dict) and isinstance(references.get("references"), list):
        return references["references"]
    return []


def parse_xpl_metadata(html: str | None) -> dict | None:
    """Extract the ``xplGlobal.document.metadata = {...};`` object from a page."""
    if not html:
        return None
    m = _XPL_METADATA.search(html)
    if not m:
        return None
    try:
        value, _ = json.JSONDecoder().raw_decode(html, m.end())
    except json.JSONDecodeError as exc:
        logger.warning("xplGlobal metadata is not valid JSON: %s", exc)
        return None
    return value if isinstance(value, dict) else None


class IeeeDataFetcher:
    """Fetches content, references, TOC, citations and footnotes concurrently.

    Every endpoint is best-effort: a failure is logged and leaves the
    corresponding field empty. Metadata comes from the document page when
    supplied, otherwise from the ``/metadata`` endpoint.
    """

    def __init__(
        self,
        document_id: str,
        client: httpx.AsyncClient,
        config: Config | None = None,
        metadata: dict | None = None,
    ):
        self.config = config or Config()
        self.document_id = str(document_id)
        self.client = client
        self.metadata = metadata
        self.api_base = f"{self.config.ieee_origin}/rest/document"

    def endpoint(self, suffix: str = "") -> str:
        return f"{self.api_base}/{self.document_id}/{suffix}"

    async def fetch_all(self) -> IeeeDocument:
        doc = IeeeDocument(document_id=self.document_id, metadata=dict(self.metadata or {}))
        logger.info("stage:fetch start document=%s", self.document_id)

        content, references, toc, citations, footnotes = await asyncio.gather(
            self._best_effort("content", self.fetch_content()),
            self._best_effort("references", self.fetch_references()),
            self._best_effort("toc", self.fetch_toc()),
            self._best_effort("citations", self.fetch_citations()),
            self._best_effort("footnotes", self.fetch_footnotes()),
        )
        doc.content = content
        doc.references = references
        doc.toc = toc
        doc.citations = citations
        doc.footnotes = footnotes or []

        if not self.metadata:
            extra = await self._best_effort("metadata", self.fetch_metadata())
            if isinstance(extra, dict):
                doc.metadata.update(extra)

        if doc.content is None and not doc.metadata:
            raise DocumentStructureError(
                f"IEEE document {self.document_id}: neither article content nor metadata is available"
            )
        logger.info(
            "stage:fetch done content=%s references=%d footnotes=%d",
            doc.content is not None,
            len(reference_list(doc.references)),
            len(doc.footnotes),
        )
        return doc

    async def fetch_content(self) -> BeautifulSoup:
        html = await fetch_text(self.client, self.endpoint(), *self._retry())
        return BeautifulSoup(html, "lxml")

    async def fetch_references(self) -> dict:
        return await fetch_json(self.client, self.endpoint("references?start=1&count=200"), *self._retry())

    async def fetch_toc(self):
        return await fetch_json(self.client, self.endpoint("toc"), *self._retry())

    async def fetch_citations(self):
        return await fetch_json(self.client, self.endpoint("citations"), *self._retry())

    async def fetch_footnotes(self) -> list:
        data = await fetch_json(self.client, self.endpoint("footnotes"), *self._retry())
        if isinstance(data, dict) and isinstance(data.get("footnote"), list):
            return data["footnote"]
        if isinstance(data, list):
            return data
        return []

    async def fetch_metadata(self) -> dict:
        return await fetch_json(self.client, self.endpoint("metadata"), *self._retry())

    async def fetch_page_metadata(self, page_url: str) -> dict | None:
        """Read ``xplGlobal`` metadata out of the public document page."""
        try:
            html = await fetch_text(self.client, page_url, *self._retry())
        except FetchError as exc:
            logger.warning("document page unavailable: %s", exc)
            return None
        return parse_xpl_metadata(html)

    def _retry(self) -> tuple[int, float]:
        return self.config.http.max_retry, self.config.http.retry_delay

    async def _best_effort(self, label: str, coro):
        try:
            return await coro
        except (FetchError, ValueError) as exc:
            logger.warning("IEEE %s not available for %s: %s", label, self.document_id, exc)
            return None
