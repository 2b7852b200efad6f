from __future__ import annotations

import io
import json
from pathlib import Path
from typing import Callable

import httpx
import pytest
from bs4 import BeautifulSoup
from PIL import Image

from paper_exporter.config import Config, HttpConfig, ImagesConfig
from paper_exporter.ieee_fetcher import IeeeDocument

FIXTURES = Path(__file__).parent / "fixtures"


def read_fixture(name: str) -> str:
    return (FIXTURES / name).read_text(encoding="utf-8")


def load_json(name: str):
    return json.loads(read_fixture(name))


def image_bytes(fmt: str = "PNG", size: tuple[int, int] = (40, 30), color=(200, 40, 40)) -> bytes:
    out = io.BytesIO()
    mode = "P" if fmt == "GIF" else "RGB"
    img = Image.new("RGB", size, color)
    if mode == "P":
        img = img.convert("P")
    img.save(out, format=fmt)
    return out.getvalue()


def noisy_png(size: tuple[int, int] = (600, 400)) -> bytes:
    """A PNG that does not compress well."""
    img = Image.effect_noise(size, 90).convert("RGB")
    out = io.BytesIO()
    img.save(out, format="PNG")
    return out.getvalue()


def mock_client(routes: dict[str, tuple[int, bytes, str]]) -> httpx.AsyncClient:
    """AsyncClient answering from ``{url_or_path: (status, body, content_type)}``."""
    def handler(request: httpx.Request) -> httpx.Response:
        for key in (str(request.url), request.url.path):
            if key in routes:
                status, body, content_type = routes[key]
                return httpx.Response(status, content=body, headers={"content-type": content_type})
        return httpx.Response(404, content=b"not found")

    return httpx.AsyncClient(transport=httpx.MockTransport(handler), follow_redirects=True)


@pytest.fixture
def fast_config() -> Config:
    return Config(
        http=HttpConfig(max_retry=1, retry_delay=0.0),
        images=ImagesConfig(target="png"),
    )


@pytest.fixture
def arxiv_html() -> str:
    return read_fixture("arxiv_sample.html")


@pytest.fixture
def ieee_document() -> IeeeDocument:
    return IeeeDocument(
        document_id="1234567",
        content=BeautifulSoup(read_fixture("ieee_content.html"), "lxml"),
        references=load_json("ieee_references.json"),
        toc=[{"title": "Introduction", "id": "sec1"}],
        metadata=load_json("ieee_metadata.json"),
        citations=load_json("ieee_citations.json"),
        footnotes=load_json("ieee_footnotes.json")["footnote"],
    )


@pytest.fixture
def make_client() -> Callable[..., httpx.AsyncClient]:
    return mock_client
