"""Raster transcoding with Pillow: fit, re-encode and shrink until small enough."""

from __future__ import annotations

import io
import logging
import math
from dataclasses import dataclass

from PIL import Image as PillowImage

logger = logging.getLogger(__name__)

_FORMATS = {"webp": ("WEBP", "image/webp"), "png": ("PNG", "image/png")}


@dataclass
class Transcoded:
    data: bytes
    mime: str
    width: int
    height: int

    @property
    def size(self) -> int:
        return len(self.data)


def image_info(data: bytes) -> tuple[int, int, str]:
    with PillowImage.open(io.BytesIO(data)) as img:
        return img.width, img.height, (img.format or "").upper()


def bounded_size(width: int, height: int, max_dim: int) -> tuple[int, int]:
    """Scale ``(width, height)`` so the longer side is at most ``max_dim``."""
    width, height = max(1, int(width)), max(1, int(height))
    scale = min(1.0, max_dim / max(width, height))
    return max(1, round(width * scale)), max(1, round(height * scale))


def _open_first_frame(data: bytes) -> PillowImage.Image:
    with PillowImage.open(io.BytesIO(data)) as img:
        img.seek(0)
        frame = img.copy()
    if frame.mode in ("RGBA", "LA") or (frame.mode == "P" and "transparency" in frame.info):
        return frame.convert("RGBA")
    if frame.mode != "RGB":
        return frame.convert("RGB")
    return frame


def _encode(img: PillowImage.Image, target: str, quality: float) -> bytes:
    fmt, _ = _FORMATS[target]
    out = io.BytesIO()
    if fmt == "WEBP":
        img.save(out, format=fmt, quality=int(round(quality * 100)))
    else:
        img.save(out, format=fmt, optimize=True)
    return out.getvalue()


def _render(img: PillowImage.Image, width: int, height: int, target: str, quality: float) -> bytes:
    if (width, height) != img.size:
        img = img.resize((width, height), PillowImage.Resampling.LANCZOS)
    return _encode(img, target, quality)


def scale_and_transcode(
    data: bytes,
    max_dim: int,
    max_bytes: int,
    target: str = "webp",
    quality: float = 0.92,
    min_quality: float = 0.6,
    quality_step: float = 0.07,
    downscale_step: float = 0.85,
    max_iterations: int = 8,
) -> Transcoded:
    """Re-encode a raster, then tighten quality and size while it is too big.

    Each pass over ``max_bytes`` first lowers WebP quality by ``quality_step``
    (not below ``min_quality``); once quality is exhausted, or for PNG, both
    sides shrink by ``downscale_step``. At most ``max_iterations`` passes run.
    """
    if target not in _FORMATS:
        raise ValueError(f"unsupported target format: {target}")
    img = _open_first_frame(data)
    width, height = bounded_size(img.width, img.height, max_dim)
    out = _render(img, width, height, target, quality)

    iterations = 0
    while len(out) > max_bytes and iterations < max_iterations:
        if target == "webp" and quality > min_quality:
            quality = max(min_quality, quality - quality_step)
        else:
            width = max(1, math.floor(width * downscale_step))
            height = max(1, math.floor(height * downscale_step))
        out = _render(img, width, height, target, quality)
        iterations += 1
        logger.debug("transcode pass %d: %dx%d q=%.2f bytes=%d", iterations, width, height, quality, len(out))

    return Transcoded(out, _FORMATS[target][1], width, height)


def convert_gif(data: bytes, target: str = "png", max_dim: int = 2400, quality: float = 0.92) -> Transcoded:
    """Re-encode the first frame of a GIF as PNG or WebP."""
    if target not in _FORMATS:
        raise ValueError(f"unsupported target format: {target}")
    img = _open_first_frame(data)
    width, height = bounded_size(img.width, img.height, max_dim)
    return Transcoded(_render(img, width, height, target, quality), _FORMATS[target][1], width, height)


def downscale_to_fit(
    data: bytes,
    max_bytes: int,
    max_dim: int,
    min_dim: int,
    step: float = 0.85,
    target: str = "png",
    quality: float = 0.92,
) -> Transcoded:
    """Shrink the longer side by ``step`` until the encoding fits ``max_bytes``.

    Stops once the longer side would fall below ``min_dim``; the result may
    then still exceed ``max_bytes`` and the caller decides what to do.
    """
    if target not in _FORMATS:
        raise ValueError(f"unsupported target format: {target}")
    img = _open_first_frame(data)
    dim = min(max_dim, max(img.width, img.height))
    width, height = img.size
    out = data
    mime = PillowImage.MIME.get(image_info(data)[2], "application/octet-stream")

    while len(out) > max_bytes and dim >= min_dim:
        dim = math.floor(dim * step)
        width, height = bounded_size(img.width, img.height, dim)
        out = _render(img, width, height, target, quality)
        mime = _FORMATS[target][1]
        logger.debug("downscale: max_dim=%d bytes=%d", dim, len(out))

    return Transcoded(out, mime, width, height)
