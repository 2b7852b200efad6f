"""Springer, ScienceDirect and MDPI export tool."""

import json
import logging

from paper_exporter.pipeline import PublisherExporter, adapter_class_for_url
from paper_mcp.browser_manager import BrowserManager
from paper_mcp.schemas import PublisherExportInput
from paper_mcp.utils.errors import format_error
from paper_mcp.utils.settings import get_config, get_file_manager

logger = logging.getLogger(__name__)


async def publisher_export_markdown(arguments: dict) -> str:
    """Export a publisher article page and save it to the downloads folder."""
    try:
        input_data = PublisherExportInput(**arguments)
        if adapter_class_for_url(input_data.url) is None:
            return format_error(
                "publisher_export_markdown",
                ValueError(f"Unsupported article URL: {input_data.url}"),
                "Supported sites: link.springer.com, www.sciencedirect.com and www.mdpi.com."
            )
        config = get_config()

        html = None
        if input_data.use_browser:
            manager = await BrowserManager.get_instance()
            html = await manager.read_page_html(input_data.url)

        async with await PublisherExporter.from_url(input_data.url, config, html=html) as exporter:
            artifact = await exporter.export(input_data.mode)
            meta = exporter.meta

        file_info = get_file_manager().save_artifact(artifact)
        result = {
            "status": "exported",
            "mode": input_data.mode,
            "site": exporter.adapter.site,
            "article_id": exporter.article_id,
            "title": meta.title if meta else None,
            "doi": meta.doi if meta else None,
            "message": f"Exported {input_data.mode} Markdown. Saved to: {file_info['path']}",
            **file_info,
        }
        return json.dumps(result, indent=2)

    except Exception as e:
        logger.exception("publisher export failed for %s", arguments.get("url"))
        if "browser not launched" in str(e).lower():
            return format_error("publisher_export_markdown", e)
        return format_error(
            "publisher_export_markdown",
            e,
            "Publishers may block plain HTTP clients; launch the browser and retry with use_browser=true."
        )
