"""Browser lifecycle tools."""

import json
import logging

from paper_mcp.browser_manager import BrowserManager
from paper_mcp.schemas import BrowserLaunchInput
from paper_mcp.utils.errors import format_error

logger = logging.getLogger(__name__)


async def browser_launch(arguments: dict) -> str:
    """Launch Chromium via Playwright."""
    try:
        input_data = BrowserLaunchInput(**arguments)
        manager = await BrowserManager.get_instance()
        result = await manager.launch(
            headless=input_data.headless,
            viewport_width=input_data.viewport_width,
            viewport_height=input_data.viewport_height,
        )
        return json.dumps(result, indent=2)

    except Exception as e:
        return format_error(
            "browser_launch", e, "Run `playwright install chromium` if the browser binary is missing."
        )


async def browser_close(arguments: dict) -> str:
    try:
        manager = await BrowserManager.get_instance()
        result = await manager.close()
        return json.dumps(result, indent=2)

    except Exception as e:
        return format_error("browser_close", e)
