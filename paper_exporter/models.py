from __future__ import annotations

import dataclasses
from dataclasses import dataclass, field
from typing import Any


@dataclass
class Author:
    name: str
    aff: str = ""
    mail: str = ""
    orcid: str = ""


@dataclass
class PaperMeta:
    title: str
    authors: list[Author] = field(default_factory=list)
    abstract: str = ""
    arxiv_id: str | None = None
    version: str | None = None
    links: dict[str, str | None] = field(default_factory=dict)
    site: str = "arXiv"
    article_id: str | None = None
    doi: str | None = None
    journal: str = ""
    volume: str = ""
    issue: str = ""
    pages: str = ""
    year: str = ""
    keywords: list[str] = field(default_factory=list)
    highlights: list[str] = field(default_factory=list)
    # "<sup>1</sup> Dept. ..." lines for sites that list affiliations apart from authors
    affiliations: list[str] = field(default_factory=list)
    notes: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return dataclasses.asdict(self)


@dataclass
class BibItem:
    num: int
    id: str
    text: str
    doi: str | None = None
    url: str | None = None


@dataclass
class SectionBlock:
    level: int
    title: str
    anchor: str
    nodes: list[Any] = field(default_factory=list)


@dataclass
class MathExpr:
    type: str  # "inline" | "display"
    tex: str
    tag: str = ""


@dataclass
class FigureInfo:
    kind: str  # "img" | "svg"
    src: str | None = None
    inline_svg: str | None = None
    caption: str = ""
    id: str | None = None
    path: str | None = None


@dataclass
class TableInfo:
    headers: list[list[str]] = field(default_factory=list)
    rows: list[list[str]] = field(default_factory=list)
    html: str = ""
    caption: str = ""


@dataclass
class Footnote:
    key: str
    content: str


@dataclass
class Asset:
    name: str
    mime: str
    path: str
    data: bytes
    hash: str
    source_url: str | None = None
    width: int | None = None
    height: int | None = None
    data_url: str | None = None

    @property
    def size(self) -> int:
        return len(self.data)


@dataclass
class ExportArtifact:
    filename: str
    data: bytes
    mime: str
    markdown: str = ""
    asset_count: int = 0
