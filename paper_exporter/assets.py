"""Download, transcode, deduplicate and name the images an export embeds."""

from __future__ import annotations

import asyncio
import base64
import hashlib
import logging
import re
from urllib.parse import unquote, urlparse

import httpx
from bs4 import BeautifulSoup

from .config import Config
from .errors import FetchError
from .fetch import fetch_with_retry, make_client
from .images import convert_gif, scale_and_transcode
from .models import Asset

logger = logging.getLogger(__name__)

SVG_NS = "http://www.w3.org/2000/svg"
XLINK_NS = "http://www.w3.org/1999/xlink"

_EXT_BY_MIME = (
    ("image/webp", ".webp"),
    ("image/png", ".png"),
    ("image/jpeg", ".jpg"),
    ("image/jpg", ".jpg"),
    ("image/svg", ".svg"),
    ("image/gif", ".gif"),
)

_MIME_BY_EXT = {
    "png": "image/png",
    "jpg": "image/jpeg",
    "jpeg": "image/jpeg",
    "webp": "image/webp",
    "gif": "image/gif",
    "svg": "image/svg+xml",
}

# The HTML parser lower-cases names; SVG renderers need the original case.
_SVG_TAGS = {name.lower(): name for name in (
    "altGlyph", "animateMotion", "animateTransform", "clipPath", "feBlend", "feColorMatrix",
    "feComponentTransfer", "feComposite", "feConvolveMatrix", "feDiffuseLighting",
    "feDisplacementMap", "feDistantLight", "feDropShadow", "feFlood", "feFuncA", "feFuncB",
    "feFuncG", "feFuncR", "feGaussianBlur", "feImage", "feMerge", "feMergeNode",
    "feMorphology", "feOffset", "fePointLight", "feSpecularLighting", "feSpotLight",
    "feTile", "feTurbulence", "foreignObject", "linearGradient", "radialGradient", "textPath",
)}
_SVG_ATTRS = {name.lower(): name for name in (
    "attributeName", "baseFrequency", "calcMode", "clipPathUnits", "diffuseConstant",
    "filterUnits", "gradientTransform", "gradientUnits", "kernelMatrix", "keySplines",
    "keyTimes", "lengthAdjust", "limitingConeAngle", "markerHeight", "markerUnits",
    "markerWidth", "maskContentUnits", "maskUnits", "numOctaves", "pathLength",
    "patternContentUnits", "patternTransform", "patternUnits", "pointsAtX", "pointsAtY",
    "pointsAtZ", "preserveAspectRatio", "primitiveUnits", "refX", "refY", "repeatCount",
    "specularExponent", "spreadMethod", "startOffset", "stdDeviation", "stitchTiles",
    "surfaceScale", "tableValues", "textLength", "viewBox", "xChannelSelector",
    "yChannelSelector",
)}


def ext_from_mime(mime: str | None) -> str:
    mime = (mime or "").lower()
    for prefix, ext in _EXT_BY_MIME:
        if prefix in mime:
            return ext
    return ".bin"


def mime_from_url(url: str | None) -> str | None:
    m = re.search(r"\.(png|jpe?g|webp|gif|svg)\b", str(url or "").lower())
    return _MIME_BY_EXT.get(m.group(1)) if m else None


def sanitize_name(s: str | None) -> str:
    name = re.sub(r"[^\w.-]+", "_", str(s or "asset"), flags=re.ASCII).strip("_")[:64]
    return name or "asset"


def strip_ext(name: str) -> str:
    return re.sub(r"\.[a-z0-9]+$", "", name, flags=re.IGNORECASE)


def filename_from_url(url: str | None) -> str:
    path = urlparse(str(url or "")).path
    parts = [p for p in path.split("/") if p]
    last = unquote(parts[-1]) if parts else "image"
    return strip_ext(sanitize_name(last))


def decode_data_url(url: str) -> tuple[str, bytes]:
    m = re.match(r"^data:([^;,]+)?((?:;[^;,]*)*?)(;base64)?,(.*)$", url, re.IGNORECASE | re.DOTALL)
    if not m:
        return "application/octet-stream", b""
    mime = m.group(1) or "application/octet-stream"
    payload = m.group(4)
    if m.group(3):
        return mime, base64.b64decode(unquote(payload))
    return mime, unquote(payload).encode("utf-8")


def to_data_url(asset: Asset) -> str:
    if asset.data_url:
        return asset.data_url
    asset.data_url = f"data:{asset.mime};base64,{base64.b64encode(asset.data).decode('ascii')}"
    return asset.data_url


def serialize_svg(markup: str) -> str:
    """Turn inline SVG taken from an HTML page into a standalone SVG document."""
    soup = BeautifulSoup(markup, "lxml")
    svg = soup.find("svg")
    if svg is None:
        return f'<?xml version="1.0" encoding="UTF-8"?>\n<svg xmlns="{SVG_NS}"></svg>'

    for el in [svg, *svg.find_all(True)]:
        el.name = _SVG_TAGS.get(el.name, el.name)
        el.attrs = {_SVG_ATTRS.get(key, key): value for key, value in el.attrs.items()}

    if not svg.get("xmlns"):
        svg["xmlns"] = SVG_NS
    if not svg.get("xmlns:xlink"):
        svg["xmlns:xlink"] = XLINK_NS
    return f'<?xml version="1.0" encoding="UTF-8"?>\n{svg}'


class AssetsManager:
    """Registry of exported assets with bounded-concurrency downloads.

    Assets are keyed by the SHA-1 of their bytes; registering the same bytes
    twice returns the first asset. Names are unique within one export.
    """

    def __init__(self, config: Config | None = None, client: httpx.AsyncClient | None = None):
        self.config = config or Config()
        self._client = client
        self._owns_client = client is None
        self._semaphore = asyncio.Semaphore(self.config.images.concurrency)
        self._assets: list[Asset] = []
        self._names: set[str] = set()
        self._by_hash: dict[str, Asset] = {}

    async def __aenter__(self) -> "AssetsManager":
        return self

    async def __aexit__(self, *exc) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._owns_client and self._client is not None:
            await self._client.aclose()
            self._client = None

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = make_client(self.config.http)
        return self._client

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def fetch_raster(self, url: str | None) -> dict:
        """Download ``url`` and register it as an asset.

        Returns a dict with ``path`` (the original URL) and, on success,
        ``asset_path`` (``assets/<name>``) plus ``name``, ``mime``, ``bytes``,
        ``width`` and ``height``. Failures leave only ``path``.
        """
        if not url:
            return {"path": url}
        images = self.config.images
        try:
            if url.lower().startswith("data:"):
                mime, data = decode_data_url(url)
                asset = self._register(data, mime, filename_from_url("image"), source_url=url)
                asset.data_url = asset.data_url or url
                return self._describe(url, asset)

            data, mime = await self.download(url)

            if "image/gif" in mime.lower():
                if images.gif_to_png:
                    out = await asyncio.to_thread(
                        convert_gif, data, images.target, images.max_dim, images.webp_quality
                    )
                    asset = self._register(out.data, out.mime, filename_from_url(url), url, out.width, out.height)
                else:
                    asset = self._register(data, "image/gif", filename_from_url(url), url)
                return self._describe(url, asset)

            out = await asyncio.to_thread(
                scale_and_transcode,
                data,
                images.max_dim,
                images.max_bytes,
                images.target,
                images.webp_quality,
                images.min_webp_quality,
                images.quality_step,
                images.downscale_step,
                images.max_iterations,
            )
            asset = self._register(out.data, out.mime, filename_from_url(url), url, out.width, out.height)
            return self._describe(url, asset)
        except Exception as exc:
            logger.warning("asset fetch failed for %s: %s", url, exc)
            return {"path": url}

    def register_svg(self, svg_markup: str, suggested_name: str = "figure.svg") -> dict:
        serialized = serialize_svg(svg_markup)
        base = strip_ext(suggested_name) or "figure"
        asset = self._register(serialized.encode("utf-8"), "image/svg+xml", base)
        result = self._describe(None, asset)
        result["inline_svg"] = serialized
        return result

    def register_bytes(self, data: bytes, mime: str, base_name: str, source_url: str | None = None) -> Asset:
        return self._register(data, mime, base_name, source_url)

    def list(self) -> list[Asset]:
        return list(self._assets)

    def clear(self) -> None:
        self._assets.clear()
        self._names.clear()
        self._by_hash.clear()

    def to_data_url(self, asset: Asset) -> str:
        return to_data_url(asset)

    async def download(self, url: str) -> tuple[bytes, str]:
        """Fetch raw bytes and MIME type, bounded by the concurrency semaphore."""
        http = self.config.http
        async with self._semaphore:
            response = await fetch_with_retry(self.client, url, http.max_retry, http.retry_delay)
        if not response.content:
            raise FetchError(url, "empty response")
        content_type = response.headers.get("content-type", "").split(";")[0].strip()
        return response.content, content_type or mime_from_url(url) or "application/octet-stream"

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _register(
        self,
        data: bytes,
        mime: str,
        base_name: str,
        source_url: str | None = None,
        width: int | None = None,
        height: int | None = None,
    ) -> Asset:
        digest = hashlib.sha1(data).hexdigest()
        existing = self._by_hash.get(digest)
        if existing is not None:
            logger.debug("asset %s duplicates %s", source_url or base_name, existing.name)
            return existing

        name = self._unique_name(base_name, ext_from_mime(mime))
        asset = Asset(
            name=name,
            mime=mime,
            path=f"assets/{name}",
            data=data,
            hash=digest,
            source_url=source_url,
            width=width,
            height=height,
        )
        self._assets.append(asset)
        self._by_hash[digest] = asset
        return asset

    def _unique_name(self, base: str, ext: str) -> str:
        clean = sanitize_name(base or "asset")
        ext = ext if ext.startswith(".") else f".{ext}"
        name = f"{clean}{ext}"
        i = 1
        while name in self._names:
            i += 1
            name = f"{clean}_{i:02d}{ext}"
        self._names.add(name)
        return name

    @staticmethod
    def _describe(url: str | None, asset: Asset) -> dict:
        return {
            "path": url,
            "asset_path": asset.path,
            "name": asset.name,
            "mime": asset.mime,
            "bytes": asset.size,
            "width": asset.width,
            "height": asset.height,
        }
