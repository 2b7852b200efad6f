"""Downloads folder listing."""

import json

from paper_mcp.schemas import ListExportsInput
from paper_mcp.utils.errors import format_error
from paper_mcp.utils.settings import get_file_manager


async def list_exports(arguments: dict) -> str:
    """List exported Markdown and TextBundle files, newest first."""
    try:
        input_data = ListExportsInput(**arguments)
        manager = get_file_manager()
        files = manager.list_files()
        if input_data.limit:
            files = files[:input_data.limit]

        result = {
            "status": "success",
            "download_folder": str(manager.base_dir.absolute()),
            "files_count": len(files),
            "files": files,
        }
        return json.dumps(result, indent=2)

    except Exception as e:
        return format_error("list_exports", e)
