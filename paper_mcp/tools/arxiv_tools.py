"""arXiv paper tools."""

import asyncio
import json
import logging

import arxiv

from paper_exporter.pipeline import ArxivExporter, parse_arxiv_ref
from paper_mcp.schemas import ArxivExportInput, ArxivGetPaperInput
from paper_mcp.utils.errors import format_error
from paper_mcp.utils.settings import get_config, get_file_manager

logger = logging.getLogger(__name__)


def _lookup(paper_id: str):
    search = arxiv.Search(id_list=[paper_id])
    return next(arxiv.Client().results(search), None)


async def arxiv_get_paper(arguments: dict) -> str:
    """Get metadata for a specific arXiv paper."""
    try:
        input_data = ArxivGetPaperInput(**arguments)
        arxiv_id, version = parse_arxiv_ref(input_data.paper_id)
        if arxiv_id is None:
            raise ValueError(f"not an arXiv identifier: {input_data.paper_id}")

        paper = await asyncio.to_thread(_lookup, f"{arxiv_id}{version or ''}")
        if paper is None:
            return format_error(
                "arxiv_get_paper",
                Exception("Paper not found"),
                f"No paper found with ID: {arxiv_id}"
            )

        entry_id = paper.entry_id.split("/")[-1]
        paper_data = {
            "status": "success",
            "arxiv_id": entry_id,
            "title": paper.title,
            "authors": [author.name for author in paper.authors],
            "abstract": paper.summary,
            "published": paper.published.isoformat(),
            "updated": paper.updated.isoformat() if paper.updated else None,
            "pdf_url": paper.pdf_url,
            "html_url": f"{get_config().arxiv_origin}/html/{entry_id}",
            "categories": paper.categories,
            "primary_category": paper.primary_category,
            "doi": paper.doi,
            "journal_ref": paper.journal_ref,
        }
        return json.dumps(paper_data, indent=2)

    except Exception as e:
        return format_error("arxiv_get_paper", e)


async def arxiv_export_markdown(arguments: dict) -> str:
    """Export an arXiv HTML paper and save it to the downloads folder."""
    try:
        input_data = ArxivExportInput(**arguments)
        config = get_config()

        async with await ArxivExporter.from_paper(input_data.paper, config) as exporter:
            artifact = await exporter.export(input_data.mode)
            meta = exporter.meta

        file_info = get_file_manager().save_artifact(artifact)
        result = {
            "status": "exported",
            "mode": input_data.mode,
            "title": meta.title if meta else None,
            "arxiv_id": exporter.adapter.arxiv_id,
            "version": exporter.adapter.version,
            "message": f"Exported {input_data.mode} Markdown. Saved to: {file_info['path']}",
            **file_info,
        }
        return json.dumps(result, indent=2)

    except Exception as e:
        logger.exception("arxiv export failed for %s", arguments.get("paper"))
        return format_error(
            "arxiv_export_markdown",
            e,
            "Only papers with an arXiv HTML view (arxiv.org/html/...) can be exported."
        )
