"""Markdown and TeX clean-up passes applied after conversion."""

from __future__ import annotations

import html
import re

# ---------------------------------------------------------------------------
# TeX delimiters and entities
# ---------------------------------------------------------------------------

_LEGACY_TEX = (
    ("eqno", "tag"),
    ("\\bb ", "\\mathbb "),
    ("\\rm ", "\\mathrm "),
    ("\\bf ", "\\mathbf "),
    ("\\it ", "\\mathit "),
    ("\\cal ", "\\mathcal "),
    ("\\scr ", "\\mathscr "),
    ("\\frak ", "\\mathfrak "),
    ("\\sf ", "\\mathsf "),
)

_ENTITY_FALLBACK = {
    "lt": "<", "gt": ">", "amp": "&", "quot": '"', "apos": "'",
    "nbsp": " ", "ensp": " ", "emsp": " ", "thinsp": " ",
    "le": "≤", "ge": "≥", "ne": "≠", "plusmn": "±", "pm": "±",
    "times": "×", "divide": "÷", "minus": "−", "middot": "·", "bull": "•", "hellip": "…",
    "rarr": "→", "larr": "←", "harr": "↔", "uarr": "↑", "darr": "↓",
    "langle": "⟨", "rangle": "⟩", "laquo": "«", "raquo": "»",
    "prime": "′", "Prime": "″",
    "alpha": "α", "beta": "β", "gamma": "γ", "Gamma": "Γ", "delta": "δ", "Delta": "Δ",
    "epsilon": "ε", "zeta": "ζ", "eta": "η", "theta": "θ", "Theta": "Θ", "iota": "ι",
    "kappa": "κ", "lambda": "λ", "Lambda": "Λ", "mu": "μ", "nu": "ν", "xi": "ξ", "Xi": "Ξ",
    "pi": "π", "Pi": "Π", "rho": "ρ", "sigma": "σ", "Sigma": "Σ", "tau": "τ", "phi": "φ",
    "Phi": "Φ", "chi": "χ", "psi": "ψ", "Psi": "Ψ", "omega": "ω", "Omega": "Ω",
    "reg": "®", "copy": "©", "trade": "™",
}

_NAMED_ENTITY = re.compile(r"&([a-zA-Z][a-zA-Z0-9]+);?")
_HEX_ENTITY = re.compile(r"&#x([0-9a-fA-F]+);?")
_DEC_ENTITY = re.compile(r"&#(\d+);?")


def strip_tex_delims(latex: str | None, mode: str = "display") -> str:
    """Remove ``$$``, ``\\[ \\]``, ``\\( \\)`` or ``$`` wrapped around a formula."""
    s = str(latex or "").strip()
    if re.fullmatch(r"\s*\$\$[\s\S]*\$\$\s*", s):
        s = re.sub(r"^\s*\$\$\s*", "", s)
        s = re.sub(r"\s*\$\$\s*$", "", s)
    s = re.sub(r"^\s*\\\[\s*", "", s)
    s = re.sub(r"\s*\\\]\s*$", "", s)
    s = re.sub(r"^\s*\\\(\s*", "", s)
    s = re.sub(r"\s*\\\)\s*$", "", s)
    if re.fullmatch(r"\s*\$[^$]*\$\s*", s):
        s = re.sub(r"^\s*\$\s*", "", s)
        s = re.sub(r"\s*\$\s*$", "", s)
    if mode == "inline":
        s = re.sub(r"\s*\n\s*", " ", s).strip()
    return s


def _code_point(match: re.Match, base: int) -> str:
    try:
        return chr(int(match.group(1), base))
    except (ValueError, OverflowError):
        return match.group(0)


def decode_entities(s: str | None) -> str:
    """Decode HTML entities in a TeX fragment and rewrite legacy font macros.

    Handles numeric and named entities, double escaping (``&amp;lt;``) and
    entities missing their trailing semicolon.
    """
    if not s:
        return ""
    text = str(s)
    for old, new in _LEGACY_TEX:
        text = text.replace(old, new)

    if "&" not in text:
        return text

    text = _HEX_ENTITY.sub(lambda m: _code_point(m, 16), text)
    text = _DEC_ENTITY.sub(lambda m: _code_point(m, 10), text)

    for _ in range(2):
        once = html.unescape(text)
        if once == text:
            break
        text = once

    text = _NAMED_ENTITY.sub(lambda m: _ENTITY_FALLBACK.get(m.group(1), m.group(0)), text)
    return text.replace("\u00a0", " ")


_DISPLAY_BLOCK = re.compile(r"\n\$\$\n([\s\S]*?)\n\$\$\n")
_INLINE_MATH = re.compile(r"(^|[^\\])\$([^\n$]+?)\$", re.MULTILINE)


def decode_entities_inside_math(md: str) -> str:
    """Decode entities only inside ``$$`` blocks and ``$...$`` spans."""
    def inline(match: re.Match) -> str:
        body = re.sub(r"\s*\n\s*", " ", match.group(2))
        return f"{match.group(1)}${decode_entities(body)}$"

    md = _DISPLAY_BLOCK.sub(lambda m: f"\n\n\n$$\n{decode_entities(m.group(1))}\n$$\n\n\n", md)
    return _INLINE_MATH.sub(inline, md)


# ---------------------------------------------------------------------------
# Math block shaping
# ---------------------------------------------------------------------------

_ALIGNED_BLOCK = re.compile(r"\$\$\s*\\begin\{aligned\}([\s\S]*?)\\end\{aligned\}\s*\$\$")


def fix_aligned_tag_blocks(md: str) -> str:
    """Split tagged ``aligned`` environments into one display block per row.

    Renderers that do not support ``\\tag`` inside ``aligned`` fail on the
    whole block, so each row becomes its own ``$$`` block with the alignment
    ampersands removed.
    """
    def split(match: re.Match) -> str:
        body = match.group(1)
        if not re.search(r"\\tag\{[^}]+\}", body):
            return match.group(0)
        rows = [row.strip() for row in re.split(r"\\\\\s*", body) if row.strip()]
        blocks = "\n".join(f"\n\n$$\n{row.replace('&', '').strip()}\n$$\n\n" for row in rows)
        return f"\n\n{blocks}\n\n"

    return _ALIGNED_BLOCK.sub(split, md)


def normalize_math_delimiters(md: str) -> str:
    md = re.sub(r"\\\((.+?)\\\)", lambda m: f"${m.group(1).strip()}$", md)
    return re.sub(r"\\\[(.+?)\\\]", lambda m: f"\n\n$$\n{m.group(1).strip()}\n$$\n\n", md, flags=re.DOTALL)


# ---------------------------------------------------------------------------
# Paragraph layout
# ---------------------------------------------------------------------------

_CODE_FENCE = re.compile(r"^(\s*)(```|~~~)")
_MATH_FENCE = re.compile(r"^\s*\$\$\s*$")
_HEADING = re.compile(r"^\s{0,3}#{1,6}\s")
_RULE = re.compile(r"^\s{0,3}(?:-|\*){3,}\s*$")
_BLOCKQUOTE = re.compile(r"^\s{0,3}>\s")
_LIST_ITEM = re.compile(r"^\s*(?:-|\*|\+|\d+\.)\s+")
_TABLE_ROW = re.compile(r"^\s*\|")
_TABLE_SEP = re.compile(r"^\s*\|?\s*:?-{3,}:?(?:\s*\|\s*:?-{3,}:?)*\s*\|?\s*$")


def _is_structural(line: str) -> bool:
    return any(
        pattern.match(line)
        for pattern in (_HEADING, _RULE, _BLOCKQUOTE, _LIST_ITEM, _TABLE_ROW, _TABLE_SEP)
    )


def merge_soft_wraps_markdown(md: str) -> str:
    """Join soft-wrapped paragraph lines, leaving block structures alone."""
    lines = md.replace("\r\n", "\n").replace("\r", "\n").split("\n")
    out: list[str] = []
    buf: list[str] = []
    mode = None

    def flush() -> None:
        if buf:
            out.append(re.sub(r"\s{2,}", " ", " ".join(line.strip() for line in buf)).strip())
            buf.clear()

    for line in lines:
        if mode == "code":
            out.append(line)
            if _CODE_FENCE.match(line):
                mode = None
            continue
        if mode == "math":
            out.append(line)
            if _MATH_FENCE.match(line):
                mode = None
            continue

        if _CODE_FENCE.match(line):
            flush()
            mode = "code"
            out.append(line)
        elif _MATH_FENCE.match(line):
            flush()
            mode = "math"
            out.append(line)
        elif _is_structural(line):
            flush()
            out.append(line)
        elif not line.strip():
            flush()
            out.append("")
        else:
            buf.append(line)
    flush()

    return re.sub(r"\n{3,}", "\n\n", "\n".join(out))


def collapse_blank_lines(md: str) -> str:
    return re.sub(r"\n{3,}", "\n\n", md)


_MOJIBAKE_FALLBACK = (
    ("â€™", "’"),
    ("â€˜", "‘"),
    ("â€œ", "“"),
    ("â€\x9d", "”"),
    ("â€“", "–"),
    ("â€”", "—"),
    ("â€¦", "…"),
    ("Â", ""),
)


def fix_mojibake(s: str | None) -> str:
    """Repair UTF-8 text that was decoded as Latin-1."""
    if not s:
        return ""
    try:
        return s.encode("latin-1").decode("utf-8")
    except (UnicodeEncodeError, UnicodeDecodeError):
        for bad, good in _MOJIBAKE_FALLBACK:
            s = s.replace(bad, good)
        return s
