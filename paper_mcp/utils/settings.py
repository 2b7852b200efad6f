"""Process-wide exporter config and downloads folder for the MCP tools."""

import os
from functools import lru_cache

from paper_exporter.config import Config, load_config
from paper_exporter.files import FileManager


@lru_cache(maxsize=1)
def get_config() -> Config:
    """Load ``PAPER_EXPORT_CONFIG`` if set, otherwise the defaults."""
    return load_config(os.environ.get("PAPER_EXPORT_CONFIG") or None)


@lru_cache(maxsize=1)
def get_file_manager() -> FileManager:
    return FileManager(os.environ.get("PAPER_EXPORT_DIR") or get_config().output_dir)
