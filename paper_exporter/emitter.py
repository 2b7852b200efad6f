from __future__ import annotations

from .config import Config
from .models import BibItem, FigureInfo, Footnote, MathExpr, PaperMeta, TableInfo
from .textutil import escape_table_cell, merge_soft_wraps


class MarkdownEmitter:
    """Accumulates Markdown in four buffers: head, body, footnotes, references."""

    def __init__(self, config: Config | None = None):
        self.config = config or Config()
        self.head: list[str] = []
        self.body: list[str] = []
        self.footnotes: list[str] = []
        self.references: list[str] = []

    def emit_front_matter(self, meta: PaperMeta) -> None:
        head = self.head
        head.append(f"# {meta.title or 'Untitled'}")
        head.append("")

        if meta.authors:
            head.append("## Authors")
            for author in meta.authors:
                tails = []
                if author.aff:
                    tails.append(author.aff)
                if author.mail:
                    tails.append(f"<{author.mail}>")
                line = f"{author.name} — {'; '.join(tails)}" if tails else author.name
                head.append(f"- {line}")
            head.append("")

        for heading, items in (("Affiliations", meta.affiliations), ("Notes", meta.notes)):
            if items:
                head.append(f"## {heading}")
                head.extend(f"- {merge_soft_wraps(item)}" for item in items)
                head.append("")

        if meta.abstract:
            head.append("## Abstract")
            head.append(merge_soft_wraps(meta.abstract))
            head.append("")

        if meta.highlights:
            head.append("## Highlights")
            head.extend(f"- {merge_soft_wraps(item)}" for item in meta.highlights)
            head.append("")

        if meta.keywords:
            head.append("## Keywords")
            head.append(", ".join(merge_soft_wraps(k) for k in meta.keywords))
            head.append("")

        if meta.journal:
            line = f"**{meta.journal}**"
            for label, value in (("Volume", meta.volume), ("Issue", meta.issue)):
                if value:
                    line += f", {label} {value}"
            if meta.year:
                line += f", {meta.year}"
            if meta.pages:
                line += f", Pages {meta.pages}"
            head.append(line)
            head.append("")

        line = self._source_line(meta)
        if line:
            head.append(line)
            head.append("")

    @staticmethod
    def _source_line(meta: PaperMeta) -> str:
        """``**arXiv:** id (v) — **abs:** ...`` or ``**Springer:** doi — **html:** ...``."""
        links = meta.links or {}
        if meta.site == "arXiv":
            ident, names = meta.arxiv_id, ("abs", "html", "pdf")
        else:
            ident, names = meta.article_id, ("html", "pdf", "doi")
        link_parts = [f"**{name}:** {links[name]}" for name in names if links.get(name)]
        if not ident and not link_parts:
            return ""
        line = f"**{meta.site}:** {ident or 'unknown'}"
        if meta.site == "arXiv" and meta.version:
            line += f" ({meta.version})"
        if link_parts:
            line += " — " + ", ".join(link_parts)
        return line

    def emit_toc_placeholder(self) -> None:
        self.head.extend(["## Table of Contents", "[TOC]", ""])

    def emit_heading(self, level: int, title: str) -> None:
        level = min(6, max(2, level or 2))
        self.body.append(f"{'#' * level} {merge_soft_wraps(title or 'Section')}")
        self.body.append("")

    def emit_paragraph(self, text: str) -> None:
        if not text:
            return
        self.body.append(merge_soft_wraps(text))
        self.body.append("")

    def emit_block(self, text: str) -> None:
        """Append pre-formatted text (code fences) without reflowing it."""
        if not text:
            return
        self._ensure_block_gap()
        self.body.append(text)
        self.body.append("")

    def emit_math(self, math: MathExpr | None) -> None:
        if math is None or not math.tex:
            return
        if math.type == "display":
            show_tag = math.tag and self.config.math.display_tag == "inline"
            tag = f" \\tag{{{math.tag}}}" if show_tag else ""
            self.body.append(f"$$\n{math.tex}{tag}\n$$")
        else:
            self.body.append(merge_soft_wraps(f"${math.tex}$"))
        self.body.append("")

    def emit_figure(self, fig: FigureInfo | None) -> None:
        if fig is None:
            return
        self._ensure_block_gap()

        caption = merge_soft_wraps(fig.caption)
        caption_line = ""
        if caption:
            caption_line = f"*{caption}*" if self.config.figures.caption_style == "italic" else caption

        if fig.kind == "img":
            path = fig.path or fig.src
            if not path:
                return
            self.body.append(f"![{caption}]({path})")
        elif fig.kind == "svg":
            if self.config.images.inline_svg_in_markdown and fig.inline_svg:
                self.body.append(fig.inline_svg)
            elif fig.path:
                self.body.append(f"![{caption}]({fig.path})")
            else:
                self.body.append("<!-- SVG figure unavailable -->")
        else:
            return

        if caption_line:
            self.body.append(caption_line)
        self.body.append("")

    def emit_table(self, table: TableInfo | None) -> None:
        if table is None:
            return
        if table.caption:
            self._ensure_block_gap()
            self.body.append(merge_soft_wraps(table.caption))
            self.body.append("")
        if table.html:
            self.body.append(table.html)
            self.body.append("")
            return

        headers = table.headers or []
        rows = table.rows or []
        cols = max(
            max((len(r) for r in headers), default=0),
            max((len(r) for r in rows), default=0),
            1,
        )

        def line(cells: list[str]) -> str:
            padded = [escape_table_cell(str(cells[i])) if i < len(cells) else "" for i in range(cols)]
            return f"| {' | '.join(padded)} |"

        self.body.append(line(headers[0] if headers else []))
        self.body.append(f"| {' | '.join(['---'] * cols)} |")
        for row in rows:
            self.body.append(line(row))
        self.body.append("")

    def emit_references(self, bib: list[BibItem]) -> None:
        if not bib:
            return
        self.references.append("## References")
        for item in bib:
            line = f"[{item.num}] {merge_soft_wraps(item.text)}"
            if item.doi and item.doi not in line:
                line += f" DOI: {item.doi}"
            if item.url and item.url not in line:
                line += f" URL: {item.url}"
            self.references.append(line)
        self.references.append("")

    def emit_footnotes(self, items: list[Footnote]) -> None:
        if not items:
            return
        for item in items:
            if item.key and item.content:
                self.footnotes.append(f"[^{item.key}]: {merge_soft_wraps(item.content)}")
        self.footnotes.append("")

    def compose(self) -> str:
        return "\n".join([
            "\n".join(self.head),
            "\n".join(self.body),
            "\n".join(self.footnotes),
            "\n".join(self.references),
        ])

    def _ensure_block_gap(self) -> None:
        if self.body and self.body[-1] != "":
            self.body.append("")
