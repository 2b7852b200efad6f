from __future__ import annotations

import argparse
import asyncio
import json
import logging
import time
from pathlib import Path

from bs4 import BeautifulSoup

from .config import Config, load_config
from .fetch import make_client
from .files import FileManager
from .ieee_fetcher import IeeeDocument, parse_xpl_metadata, resolve_document_id
from .models import ExportArtifact
from .pipeline import MODES, PUBLISHERS, ArxivExporter, IeeeExporter, PublisherExporter, fetch_ieee_document

logger = logging.getLogger(__name__)


async def export_arxiv(args: argparse.Namespace, config: Config) -> ExportArtifact:
    if args.html_file:
        html = Path(args.html_file).read_text(encoding="utf-8")
        page_url = args.paper if args.paper.startswith("http") else None
        exporter = ArxivExporter(html, page_url, config)
    else:
        exporter = await ArxivExporter.from_paper(args.paper, config)
    async with exporter:
        return await exporter.export(args.mode)


def load_ieee_metadata(path: str) -> dict:
    """Metadata JSON, or a saved document page carrying ``xplGlobal`` metadata."""
    text = Path(path).read_text(encoding="utf-8")
    if text.lstrip().startswith("{"):
        return json.loads(text)
    metadata = parse_xpl_metadata(text)
    if metadata is None:
        raise ValueError(f"no IEEE metadata found in {path}")
    return metadata


async def export_ieee(args: argparse.Namespace, config: Config) -> ExportArtifact:
    metadata = load_ieee_metadata(args.metadata_file) if args.metadata_file else None
    async with make_client(config.http, referer=config.ieee_origin + "/") as client:
        if args.content_file:
            doc_id = resolve_document_id(args.document, metadata) or "unknown"
            content = BeautifulSoup(Path(args.content_file).read_text(encoding="utf-8"), "lxml")
            document = IeeeDocument(document_id=doc_id, content=content, metadata=metadata or {})
        else:
            document = await fetch_ieee_document(args.document, client, config, metadata)
        async with IeeeExporter(document, config, client) as exporter:
            return await exporter.export(args.mode)


async def export_publisher(args: argparse.Namespace, config: Config) -> ExportArtifact:
    adapter_cls = PUBLISHERS[args.source]
    if not adapter_cls.matches(args.url):
        raise ValueError(f"not a {adapter_cls.site} article URL: {args.url}")
    html = Path(args.html_file).read_text(encoding="utf-8") if args.html_file else None
    exporter = await PublisherExporter.from_url(args.url, config, html=html)
    async with exporter:
        return await exporter.export(args.mode)


async def run(args: argparse.Namespace) -> dict:
    config = load_config(args.config)
    output_dir = args.output_dir or config.output_dir
    logger.info("source      = %s", args.source)
    logger.info("mode        = %s", args.mode)
    logger.info("output_dir  = %s", output_dir)

    t0 = time.monotonic()
    if args.source == "arxiv":
        artifact = await export_arxiv(args, config)
    elif args.source in PUBLISHERS:
        artifact = await export_publisher(args, config)
    else:
        artifact = await export_ieee(args, config)

    saved = FileManager(output_dir).save_artifact(artifact)
    logger.info("--- export complete ---")
    logger.info("file          : %s", saved["path"])
    logger.info("assets        : %d", artifact.asset_count)
    logger.info("elapsed       : %.1f s", time.monotonic() - t0)
    return saved


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="paper-export",
        description="Export arXiv, IEEE Xplore, Springer, ScienceDirect and MDPI papers to Markdown or TextBundle",
    )
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument("--mode", choices=MODES, default="links", help="output format (default: links)")
    common.add_argument("--config", default=None, help="path to a YAML config file")
    common.add_argument("--output-dir", default=None, help="directory for exports (default: config output_dir)")
    common.add_argument("-v", "--verbose", action="store_true", help="debug logging")

    sub = parser.add_subparsers(dest="source", required=True)

    arxiv_cmd = sub.add_parser("arxiv", parents=[common], help="export an arXiv HTML paper")
    arxiv_cmd.add_argument("paper", help="arXiv id (2509.03654, 2509.03654v2) or /html/ URL")
    arxiv_cmd.add_argument("--html-file", default=None, help="convert a saved HTML page instead of downloading")

    ieee_cmd = sub.add_parser("ieee", parents=[common], help="export an IEEE Xplore document")
    ieee_cmd.add_argument("document", help="document URL (/document/N) or number")
    ieee_cmd.add_argument("--content-file", default=None, help="saved article HTML instead of the REST endpoint")
    ieee_cmd.add_argument("--metadata-file", default=None, help="metadata JSON or saved document page")

    for name, adapter_cls in PUBLISHERS.items():
        cmd = sub.add_parser(name, parents=[common], help=f"export a {adapter_cls.site} article page")
        cmd.add_argument("url", help=f"article URL on {adapter_cls.hosts[0]}")
        cmd.add_argument("--html-file", default=None, help="convert a saved HTML page instead of downloading")
    return parser


def main(argv: list[str] | None = None) -> None:
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s  %(levelname)-8s  %(name)s  %(message)s",
    )
    try:
        asyncio.run(run(args))
    except Exception:
        logger.exception("Export failed")
        raise SystemExit(1)


if __name__ == "__main__":
    main()
