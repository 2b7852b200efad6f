"""Exception types raised by the export pipeline."""


class ExportError(Exception):
    """Base class for export failures."""


class FetchError(ExportError):
    """A remote resource could not be fetched after all retries."""

    def __init__(self, url: str, reason: str = ""):
        self.url = url
        self.reason = reason
        message = f"Failed to fetch {url}"
        if reason:
            message += f": {reason}"
        super().__init__(message)


class DocumentStructureError(ExportError):
    """The page does not have the markup the adapter expects."""


class ConfigError(ExportError, ValueError):
    """Invalid exporter configuration."""
