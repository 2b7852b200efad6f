"""Pydantic schemas for tool input validation."""

from pydantic import BaseModel, Field
from typing import Literal, Optional


ExportMode = Literal["links", "base64", "textbundle"]


class BrowserLaunchInput(BaseModel):
    headless: bool = Field(default=True, description="Launch browser in headless mode")
    viewport_width: int = Field(default=1440, description="Browser viewport width")
    viewport_height: int = Field(default=900, description="Browser viewport height")


class ArxivGetPaperInput(BaseModel):
    paper_id: str = Field(description="arXiv paper ID (e.g., 2509.03654 or 2509.03654v2)")


class ArxivExportInput(BaseModel):
    paper: str = Field(description="arXiv ID or https://arxiv.org/html/... URL")
    mode: ExportMode = Field(default="links", description="Export format")


class IeeeExportInput(BaseModel):
    url: str = Field(description="IEEE Xplore document URL or document number")
    mode: ExportMode = Field(default="links", description="Export format")
    use_browser: bool = Field(
        default=False,
        description="Read page metadata through the launched browser instead of plain HTTP"
    )


class ListExportsInput(BaseModel):
    limit: Optional[int] = Field(default=None, ge=1, description="Return at most this many files")


class PublisherExportInput(BaseModel):
    url: str = Field(description="Springer, ScienceDirect or MDPI article URL")
    mode: ExportMode = Field(default="links", description="Export format")
    use_browser: bool = Field(
        default=False,
        description="Load the article through the launched browser instead of plain HTTP"
    )
