"""Error formatting utilities."""

from paper_exporter.errors import DocumentStructureError, FetchError


def format_error(tool_name: str, error: Exception, suggestion: str = "") -> str:
    """Format an error message for an MCP tool response."""
    error_msg = f"## ❌ Error in {tool_name}\n\n"
    error_msg += f"**Error:** {str(error)}\n\n"

    if suggestion:
        error_msg += f"**Suggestion:** {suggestion}\n"
        return error_msg

    error_str = str(error).lower()
    if "browser not launched" in error_str:
        error_msg += "**Suggestion:** Call browser_launch first.\n"
    elif isinstance(error, DocumentStructureError):
        error_msg += "**Suggestion:** The page layout is not recognised. Check that the paper has an HTML view.\n"
    elif isinstance(error, FetchError) or "network" in error_str or "connection" in error_str:
        error_msg += "**Suggestion:** Check your internet connection and try again.\n"
    elif "timeout" in error_str:
        error_msg += "**Suggestion:** The page took too long to load. Try again later.\n"
    else:
        error_msg += "**Suggestion:** Please check the error message and try again with different parameters.\n"
    return error_msg
