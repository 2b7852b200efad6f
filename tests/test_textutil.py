from __future__ import annotations

import pytest
from bs4 import BeautifulSoup

from paper_exporter.textutil import (
    absolutize,
    clean_noise_text,
    eq_loose,
    escape_table_cell,
    merge_soft_wraps,
    node_text,
    sanitize_filename,
    slug,
    split_person_list,
)


def test_merge_soft_wraps_joins_lines_and_blanks() -> None:
    assert merge_soft_wraps("  one\n   two\t\tthree\u00a0four ") == "one two three four"
    assert merge_soft_wraps(None) == ""


def test_clean_noise_text_drops_arxiv_artefacts() -> None:
    text = "Results improve. Report issue for preceding element See 3.2 for details"
    assert clean_noise_text(text) == "Results improve. for details"


def test_node_text_collapses_whitespace() -> None:
    soup = BeautifulSoup("<p>a\n <b>b</b>\u00a0 c</p>", "lxml")
    assert node_text(soup.p) == "a b c"
    assert node_text(None) == ""


def test_eq_loose_ignores_case_space_and_punctuation() -> None:
    assert eq_loose("Deep Learning: A Survey", "deep learning  a survey!")
    assert not eq_loose("Deep Learning", "Shallow Learning")


def test_slug() -> None:
    assert slug("1 Introduction & Motivation") == "1-introduction-motivation"


@pytest.mark.parametrize(
    "raw,expected",
    [
        ("Alice Zhang1, Bob Lee*, and Carol de Silva† (carol@x.com)", ["Alice Zhang", "Bob Lee", "Carol de Silva"]),
        ("Alice Zhang and Bob Lee", ["Alice Zhang", "Bob Lee"]),
        ("Wei Wang; Wei Wang; Li Na", ["Wei Wang", "Li Na"]),
        ("(1) Ann Smith, [2] Ben Jones", ["Ann Smith", "Ben Jones"]),
        ("Ann Smith, Ben Jones et al.", ["Ann Smith"]),
        ("Ann Smith <ann@example.org>", ["Ann Smith"]),
        ("", []),
    ],
)
def test_split_person_list(raw: str, expected: list[str]) -> None:
    assert split_person_list(raw) == expected


def test_sanitize_filename() -> None:
    assert sanitize_filename('A "Quoted": Title / Part 2...') == "A_Quoted_Title_Part_2"
    assert sanitize_filename("   ") == "untitled"
    assert len(sanitize_filename("x" * 500)) == 120


def test_escape_table_cell() -> None:
    assert escape_table_cell(" a|b\nc\td ") == "a\\|b<br>c d"


@pytest.mark.parametrize(
    "url,expected",
    [
        ("x1.png", "https://arxiv.org/html/2401.01234v2/x1.png"),
        ("/static/logo.png", "https://arxiv.org/static/logo.png"),
        ("//cdn.example.org/a.png", "https://cdn.example.org/a.png"),
        ("https://example.org/b.png", "https://example.org/b.png"),
        ("data:image/png;base64,AAAA", "data:image/png;base64,AAAA"),
        ("", ""),
    ],
)
def test_absolutize(url: str, expected: str) -> None:
    assert absolutize(url, "https://arxiv.org/html/2401.01234v2/", "https://arxiv.org") == expected
