"""FastMCP server exposing the paper export tools."""

from fastmcp import FastMCP
from paper_mcp.tools import arxiv_tools, exports, ieee_tools, navigation, publisher_tools

mcp = FastMCP("paper-exporter")


@mcp.tool()
async def browser_launch(headless: bool = True, viewport_width: int = 1440, viewport_height: int = 900) -> str:
    """Launch Chromium. Only needed for exports with use_browser=true.

    Args:
        headless: Run browser in headless mode (no UI)
        viewport_width: Browser viewport width in pixels
        viewport_height: Browser viewport height in pixels
    """
    return await navigation.browser_launch({
        "headless": headless,
        "viewport_width": viewport_width,
        "viewport_height": viewport_height
    })


@mcp.tool()
async def browser_close() -> str:
    """Close the browser and cleanup resources."""
    return await navigation.browser_close({})


@mcp.tool()
async def arxiv_get_paper(paper_id: str) -> str:
    """Get metadata for a specific arXiv paper.

    Args:
        paper_id: arXiv paper ID (e.g., 2509.03654)
    """
    return await arxiv_tools.arxiv_get_paper({"paper_id": paper_id})


@mcp.tool()
async def arxiv_export_markdown(paper: str, mode: str = "links") -> str:
    """Convert an arXiv HTML paper to Markdown and save it.

    Args:
        paper: arXiv ID (2509.03654, 2509.03654v2) or arxiv.org/html URL
        mode: links (remote images), base64 (inline data URLs) or textbundle (zip with assets)
    """
    return await arxiv_tools.arxiv_export_markdown({"paper": paper, "mode": mode})


@mcp.tool()
async def ieee_export_markdown(url: str, mode: str = "links", use_browser: bool = False) -> str:
    """Convert an IEEE Xplore document to Markdown and save it.

    Args:
        url: IEEE Xplore document URL (https://ieeexplore.ieee.org/document/N) or number
        mode: links, base64 or textbundle
        use_browser: Read page metadata through the launched browser
    """
    return await ieee_tools.ieee_export_markdown({"url": url, "mode": mode, "use_browser": use_browser})


@mcp.tool()
async def publisher_export_markdown(url: str, mode: str = "links", use_browser: bool = False) -> str:
    """Convert a Springer, ScienceDirect or MDPI article page to Markdown and save it.

    Args:
        url: Article URL on link.springer.com, www.sciencedirect.com or www.mdpi.com
        mode: links, base64 or textbundle
        use_browser: Load the page through the launched browser
    """
    return await publisher_tools.publisher_export_markdown({"url": url, "mode": mode, "use_browser": use_browser})


@mcp.tool()
async def list_exports(limit: int = None) -> str:
    """List exported files in the downloads folder.

    Args:
        limit: Maximum number of files to return
    """
    return await exports.list_exports({"limit": limit})


def main() -> None:
    mcp.run()


if __name__ == "__main__":
    main()
