"""Package Markdown as plain links, inline Base64 or a TextBundle archive."""

from __future__ import annotations

import json
import logging
import re
from datetime import datetime, timezone

from .assets import to_data_url
from .config import Config
from .models import Asset
from .textutil import sanitize_filename
from .zipwriter import build_zip

logger = logging.getLogger(__name__)

CREATOR_IDENTIFIER = "org.paper-exporter.markdown"
TEXTBUNDLE_TYPE = "net.daringfireball.markdown"


def suggest_filename(source: str, doc_id: str | None, title: str | None, tag: str, ext: str = "md") -> str:
    """``{source}_{id}_{title}_{tag}.{ext}`` with filesystem-safe parts."""
    safe_id = re.sub(r"[^\w.-]+", "_", str(doc_id or "unknown"), flags=re.ASCII)
    base = f"{source}_{safe_id}_{sanitize_filename(title)}_{tag}"
    return f"{base}.{ext}" if ext else base


class Exporter:
    def __init__(self, config: Config | None = None):
        self.config = config or Config()

    def as_markdown_links(self, md: str) -> str:
        return str(md or "")

    def as_markdown_base64(self, md: str, assets: list[Asset]) -> str:
        """Replace ``assets/<name>`` references with ``data:`` URLs.

        Assets that are still larger than ``images.max_bytes`` fall back to
        their original URL when ``fallback_to_link_if_too_big`` is set.
        """
        md = str(md or "")
        images = self.config.images
        for asset in assets:
            if asset.size > images.max_bytes and images.fallback_to_link_if_too_big and asset.source_url:
                replacement = asset.source_url
                logger.info("asset %s too big (%d B), keeping link", asset.name, asset.size)
            else:
                replacement = to_data_url(asset)
            for path in (asset.path, f"./{asset.path}", f"/{asset.path}"):
                md = replace_reference(md, path, replacement)
        return md

    def as_textbundle(
        self,
        md: str,
        assets: list[Asset],
        meta: dict | None = None,
        source_url: str | None = None,
        when: datetime | None = None,
    ) -> bytes:
        when = when or datetime.now(timezone.utc)
        info = {
            "version": 2,
            "type": TEXTBUNDLE_TYPE,
            "creatorIdentifier": CREATOR_IDENTIFIER,
            "transient": False,
        }
        if source_url:
            info["sourceURL"] = source_url
        info["createdAt"] = when.isoformat()
        if meta:
            info["metadata"] = meta

        entries: list[tuple[str, bytes | str]] = [
            ("text.md", "\ufeff" + str(md or "")),
            ("info.json", json.dumps(info, indent=2, ensure_ascii=False)),
        ]
        for asset in assets:
            entries.append((f"assets/{asset.name}", asset.data))
        logger.info("textbundle: %d entries", len(entries))
        # ZIP timestamps carry no zone and are read as local time
        return build_zip(entries, when.astimezone() if when.tzinfo else when)


def replace_reference(md: str, path: str, replacement: str) -> str:
    """Swap ``path`` for ``replacement`` in Markdown links and src/href attributes."""
    escaped = re.escape(path)
    md = re.sub(
        rf"\((\s*?){escaped}(\s*?)\)",
        lambda m: f"({m.group(1)}{replacement}{m.group(2)})",
        md,
    )
    return re.sub(
        rf"""(src|href)=(["']){escaped}\2""",
        lambda m: f"{m.group(1)}={m.group(2)}{replacement}{m.group(2)}",
        md,
    )
