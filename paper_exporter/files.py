"""Write export artifacts into the downloads directory."""

from __future__ import annotations

import logging
from datetime import datetime
from pathlib import Path

from .models import ExportArtifact

logger = logging.getLogger(__name__)

EXPORT_SUFFIXES = (".md", ".textbundle")


class FileManager:
    """Saves files under ``base_dir`` without overwriting earlier exports."""

    def __init__(self, base_dir: str | Path = "downloads"):
        self.base_dir = Path(base_dir)
        self.base_dir.mkdir(parents=True, exist_ok=True)

    def get_unique_filename(self, filename: str) -> str:
        """Append a timestamp (and a counter if needed) when ``filename`` exists."""
        if not (self.base_dir / filename).exists():
            return filename

        stem, dot, ext = filename.rpartition(".")
        if not dot:
            stem, ext = filename, ""
        timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
        candidate = f"{stem}_{timestamp}{dot}{ext}"
        counter = 2
        while (self.base_dir / candidate).exists():
            candidate = f"{stem}_{timestamp}_{counter}{dot}{ext}"
            counter += 1
        return candidate

    def save_file(self, content: bytes, filename: str) -> dict:
        unique = self.get_unique_filename(filename)
        path = self.base_dir / unique
        path.write_bytes(content)
        size = path.stat().st_size
        return {
            "filename": unique,
            "path": str(path.absolute()),
            "size": size,
            "size_kb": round(size / 1024, 2),
        }

    def save_artifact(self, artifact: ExportArtifact) -> dict:
        info = self.save_file(artifact.data, artifact.filename)
        info["mime"] = artifact.mime
        info["assets"] = artifact.asset_count
        logger.info("saved %s (%d bytes)", info["path"], info["size"])
        return info

    def list_files(self, suffixes: tuple[str, ...] | None = EXPORT_SUFFIXES) -> list[dict]:
        """Saved files, newest first; ``suffixes=None`` lists everything."""
        files = []
        for path in self.base_dir.iterdir():
            if not path.is_file():
                continue
            if suffixes and path.suffix not in suffixes:
                continue
            stat = path.stat()
            files.append({
                "filename": path.name,
                "path": str(path.absolute()),
                "size": stat.st_size,
                "modified": datetime.fromtimestamp(stat.st_mtime).isoformat(),
            })
        return sorted(files, key=lambda f: f["modified"], reverse=True)
