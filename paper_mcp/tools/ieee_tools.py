"""IEEE Xplore export tool."""

import json
import logging

from paper_exporter.fetch import make_client
from paper_exporter.pipeline import IeeeExporter, fetch_ieee_document
from paper_mcp.browser_manager import BrowserManager
from paper_mcp.schemas import IeeeExportInput
from paper_mcp.utils.errors import format_error
from paper_mcp.utils.settings import get_config, get_file_manager

logger = logging.getLogger(__name__)


async def ieee_export_markdown(arguments: dict) -> str:
    """Export an IEEE Xplore document and save it to the downloads folder."""
    try:
        input_data = IeeeExportInput(**arguments)
        config = get_config()

        metadata = None
        if input_data.use_browser:
            manager = await BrowserManager.get_instance()
            metadata = await manager.read_ieee_metadata(input_data.url)

        async with make_client(config.http, referer=config.ieee_origin + "/") as client:
            document = await fetch_ieee_document(input_data.url, client, config, metadata)
            async with IeeeExporter(document, config, client) as exporter:
                artifact = await exporter.export(input_data.mode)

        file_info = get_file_manager().save_artifact(artifact)
        meta = document.metadata or {}
        result = {
            "status": "exported",
            "mode": input_data.mode,
            "document_id": document.document_id,
            "title": meta.get("title") or meta.get("displayDocTitle"),
            "doi": meta.get("doi"),
            "message": f"Exported {input_data.mode} Markdown. Saved to: {file_info['path']}",
            **file_info,
        }
        return json.dumps(result, indent=2)

    except Exception as e:
        logger.exception("ieee export failed for %s", arguments.get("url"))
        if "browser not launched" in str(e).lower():
            return format_error("ieee_export_markdown", e)
        return format_error(
            "ieee_export_markdown",
            e,
            "IEEE may block plain HTTP clients; launch the browser and retry with use_browser=true."
        )
