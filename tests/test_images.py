from __future__ import annotations

import pytest

from conftest import image_bytes, noisy_png
from paper_exporter.images import bounded_size, convert_gif, downscale_to_fit, image_info, scale_and_transcode


@pytest.mark.parametrize(
    "size,max_dim,expected",
    [
        ((4000, 2000), 1000, (1000, 500)),
        ((300, 600), 1000, (300, 600)),
        ((0, 10), 5, (1, 5)),
    ],
)
def test_bounded_size(size, max_dim: int, expected) -> None:
    assert bounded_size(*size, max_dim) == expected


def test_image_info_reports_dimensions_and_format() -> None:
    assert image_info(image_bytes("PNG", (40, 30))) == (40, 30, "PNG")


def test_scale_and_transcode_fits_max_dim_as_webp() -> None:
    out = scale_and_transcode(image_bytes("JPEG", (800, 400)), max_dim=200, max_bytes=10_000_000)
    assert out.mime == "image/webp"
    assert (out.width, out.height) == (200, 100)
    assert image_info(out.data)[2] == "WEBP"


def test_scale_and_transcode_png_shrinks_until_small_enough() -> None:
    data = noisy_png((600, 400))
    out = scale_and_transcode(data, max_dim=600, max_bytes=len(data) // 4, target="png", max_iterations=20)
    assert out.mime == "image/png"
    assert out.width < 600
    assert out.size <= len(data) // 4


def test_scale_and_transcode_stops_after_max_iterations() -> None:
    data = noisy_png((300, 300))
    out = scale_and_transcode(data, max_dim=300, max_bytes=10, target="png", max_iterations=2)
    assert (out.width, out.height) == (216, 216)
    assert out.size > 10


def test_scale_and_transcode_rejects_unknown_target() -> None:
    with pytest.raises(ValueError):
        scale_and_transcode(image_bytes(), 100, 100, target="bmp")


def test_convert_gif_to_png() -> None:
    out = convert_gif(image_bytes("GIF", (64, 48)), target="png")
    assert out.mime == "image/png"
    assert image_info(out.data) == (64, 48, "PNG")


def test_downscale_to_fit_keeps_small_images_untouched() -> None:
    data = image_bytes("PNG", (50, 50))
    out = downscale_to_fit(data, max_bytes=len(data) + 1, max_dim=4096, min_dim=10)
    assert out.data == data
    assert out.mime == "image/png"


def test_downscale_to_fit_respects_min_dim() -> None:
    data = noisy_png((400, 200))
    out = downscale_to_fit(data, max_bytes=1, max_dim=4096, min_dim=300)
    assert out.size > 1
    assert out.width == 289
