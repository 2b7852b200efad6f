"""Text normalization helpers shared by the arXiv and IEEE converters."""

from __future__ import annotations

import re
import unicodedata
from urllib.parse import urljoin

from bs4 import Tag

_SOFT_WRAP = re.compile(r"[ \t]*\n[ \t]*")
_MULTI_BLANK = re.compile(r"[ \t]{2,}")

# Artefacts that arXiv's HTML view injects into element text.
_NOISE_PATTERNS = (
    re.compile(r"\bReport issue for preceding element\b", re.IGNORECASE),
    re.compile(r"\bSee\s*\d+(?:\.\d+)?\b", re.IGNORECASE),
)

_FOOTNOTE_MARKS = re.compile("[*†‡§¶‖#^~]+")
_SUPERSCRIPT_DIGITS = re.compile("[⁰-⁹¹²³]+")
_LEADING_INDEX = re.compile(r"^\s*(?:[(\[]\s*[0-9A-Za-z]{1,2}\s*[)\]]|\d+)\s+")
_TRAILING_INDEX = re.compile(r"(?:\s*[(\[]\s*[0-9A-Za-z]{1,2}\s*[)\]]|(?<=[^\W\d_])\d+|\s+\d+)\s*$")


def merge_soft_wraps(s: str | None) -> str:
    """Collapse soft line breaks and runs of blanks inside one paragraph."""
    text = _SOFT_WRAP.sub(" ", str(s or ""))
    text = _MULTI_BLANK.sub(" ", text)
    return text.replace("\u00a0", " ").strip()


def clean_noise_text(s: str | None) -> str:
    text = str(s or "")
    for pattern in _NOISE_PATTERNS:
        text = pattern.sub("", text)
    return merge_soft_wraps(text)


def node_text(node: Tag | None) -> str:
    if node is None:
        return ""
    return re.sub(r"[\s\u00a0]+", " ", node.get_text()).strip()


def eq_loose(a: str | None, b: str | None) -> bool:
    """Compare two strings ignoring whitespace, punctuation, symbols and case."""
    def norm(s: str | None) -> str:
        return "".join(
            ch for ch in str(s or "").lower()
            if not ch.isspace() and unicodedata.category(ch)[0] not in ("P", "S")
        )
    return norm(a) == norm(b)


def slug(s: str | None) -> str:
    text = re.sub(r"[^a-z0-9\- ]", "", str(s or "").lower())
    return re.sub(r"\s+", "-", text)[:80]


def split_person_list(s: str | None) -> list[str]:
    """Split an author string into individual names.

    "Alice Zhang1, Bob Lee*, and Carol de Silva† (carol@x.com)"
    -> ["Alice Zhang", "Bob Lee", "Carol de Silva"]
    """
    if not s:
        return []
    text = merge_soft_wraps(s)
    text = re.sub(r"<[^>]*@[^>]*>", "", text)
    text = re.sub(r"\([^()]*@[^()]*\)", "", text)
    text = re.sub(r"\s*(?:,|;|，|；|、)\s*", "|", text)
    text = re.sub(r"(?:\s+|\|)(?:and|&|与|和)\s+", "|", text, flags=re.IGNORECASE)

    parts = [p.strip() for p in text.split("|") if p.strip()]
    parts = [p for p in parts if not re.search(r"et\s*al\.?$", p, re.IGNORECASE)]

    names: list[str] = []
    for part in parts:
        name = re.sub(r"^[\s,;·•]+|[\s,;·•]+$", "", part)
        name = _FOOTNOTE_MARKS.sub("", name)
        name = _SUPERSCRIPT_DIGITS.sub("", name)
        name = _LEADING_INDEX.sub("", name)
        name = _TRAILING_INDEX.sub("", name)
        name = re.sub(r"\s{2,}", " ", name).strip()
        if len(name) >= 2:
            names.append(name)

    seen: set[str] = set()
    out: list[str] = []
    for name in names:
        key = name.lower()
        if key not in seen:
            seen.add(key)
            out.append(name)
    return out


def sanitize_filename(s: str | None, max_length: int = 120) -> str:
    text = unicodedata.normalize("NFKC", str(s or ""))
    text = re.sub(r"\s+", "_", text)
    text = re.sub(r'[<>:"/\\|?*\x00-\x1f]', "", text)
    text = re.sub(r"\.+$", "", text)
    text = re.sub(r"_{2,}", "_", text)
    text = text.strip("_")[:max_length]
    return text or "untitled"


def escape_table_cell(s: str) -> str:
    return (
        s.replace("|", "\\|")
        .replace("\r\n", "<br>")
        .replace("\n", "<br>")
        .replace("\t", " ")
        .strip()
    )


def absolutize(url: str | None, base: str | None, origin: str) -> str | None:
    """Resolve a link found in the page against its base href."""
    if not url:
        return url
    if re.match(r"^(?:data|blob|https?):", url, re.IGNORECASE):
        return url
    if url.startswith("//"):
        return "https:" + url
    if url.startswith("/"):
        return origin.rstrip("/") + url
    return urljoin(base or origin.rstrip("/") + "/", url)
