from __future__ import annotations

import pathlib
from dataclasses import dataclass, field

import yaml

from .errors import ConfigError

DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) "
    "AppleWebKit/537.36 (KHTML, like Gecko) "
    "Chrome/122.0.0.0 Safari/537.36"
)

_CITATION_STYLES = ("footnote+references", "bracket+references")
_CAPTION_STYLES = ("plain", "italic")
_IMAGE_TARGETS = ("webp", "png")
_DISPLAY_TAGS = ("inline", "none")


@dataclass(frozen=True)
class CitationConfig:
    style: str = "footnote+references"
    reference_prefix: str = "R"
    footnote_prefix: str = "F"


@dataclass(frozen=True)
class ImagesConfig:
    prefer_raster: bool = True
    inline_svg_in_markdown: bool = True
    embed_svg_in_textbundle: bool = True
    max_bytes: int = int(2.5 * 1024 * 1024)
    max_dim: int = 4096
    min_dim: int = 512
    downscale_step: float = 0.85
    concurrency: int = 4
    target: str = "webp"
    webp_quality: float = 0.92
    min_webp_quality: float = 0.6
    quality_step: float = 0.07
    max_iterations: int = 8
    gif_to_png: bool = True
    fallback_to_link_if_too_big: bool = True


@dataclass(frozen=True)
class FiguresConfig:
    caption_style: str = "plain"


@dataclass(frozen=True)
class MathConfig:
    display_tag: str = "inline"
    normalize_delimiters: bool = True
    decode_entities_inside_math: bool = True


@dataclass(frozen=True)
class HttpConfig:
    max_retry: int = 3
    retry_delay: float = 1.0
    timeout: float = 15.0
    user_agent: str = DEFAULT_USER_AGENT


@dataclass(frozen=True)
class Config:
    citation: CitationConfig = field(default_factory=CitationConfig)
    images: ImagesConfig = field(default_factory=ImagesConfig)
    figures: FiguresConfig = field(default_factory=FiguresConfig)
    math: MathConfig = field(default_factory=MathConfig)
    http: HttpConfig = field(default_factory=HttpConfig)
    output_dir: str = "downloads"
    dedup_window: int = 50
    arxiv_origin: str = "https://arxiv.org"
    ieee_origin: str = "https://ieeexplore.ieee.org"


def _section(data: dict, key: str) -> dict:
    raw = data.get(key, {})
    if raw is None:
        return {}
    if not isinstance(raw, dict):
        raise ConfigError(f"'{key}' must be a mapping, got {type(raw).__name__}")
    return raw


def _build(cls, raw: dict, name: str):
    known = set(cls.__dataclass_fields__)
    unknown = set(raw) - known
    if unknown:
        raise ConfigError(f"unknown {name} keys: {', '.join(sorted(unknown))}")
    defaults = cls()
    values = {}
    for key, value in raw.items():
        default = getattr(defaults, key)
        if isinstance(default, bool):
            if not isinstance(value, bool):
                raise ConfigError(f"{name}.{key} must be true or false, got: {value!r}")
            values[key] = value
            continue
        try:
            if isinstance(default, int):
                values[key] = int(value)
            elif isinstance(default, float):
                values[key] = float(value)
            else:
                values[key] = str(value)
        except (TypeError, ValueError) as exc:
            raise ConfigError(f"{name}.{key}: {exc}") from exc
    return cls(**values)


def _validate(config: Config) -> None:
    if config.citation.style not in _CITATION_STYLES:
        raise ConfigError(
            f"citation.style must be one of {', '.join(_CITATION_STYLES)}, got: {config.citation.style}"
        )
    if config.figures.caption_style not in _CAPTION_STYLES:
        raise ConfigError(
            f"figures.caption_style must be one of {', '.join(_CAPTION_STYLES)}, "
            f"got: {config.figures.caption_style}"
        )
    if config.math.display_tag not in _DISPLAY_TAGS:
        raise ConfigError(f"math.display_tag must be inline or none, got: {config.math.display_tag}")
    images = config.images
    if images.target not in _IMAGE_TARGETS:
        raise ConfigError(f"images.target must be webp or png, got: {images.target}")
    if images.max_bytes <= 0:
        raise ConfigError(f"images.max_bytes must be > 0, got {images.max_bytes}")
    if images.max_dim < 1 or images.min_dim < 1:
        raise ConfigError("images.max_dim and images.min_dim must be >= 1")
    if images.min_dim > images.max_dim:
        raise ConfigError(f"images.min_dim ({images.min_dim}) exceeds images.max_dim ({images.max_dim})")
    if not 0 < images.downscale_step < 1:
        raise ConfigError(f"images.downscale_step must be in (0, 1), got {images.downscale_step}")
    if images.concurrency < 1:
        raise ConfigError(f"images.concurrency must be >= 1, got {images.concurrency}")
    if not 0 < images.min_webp_quality <= images.webp_quality <= 1:
        raise ConfigError("images quality bounds must satisfy 0 < min_webp_quality <= webp_quality <= 1")
    if images.max_iterations < 0:
        raise ConfigError(f"images.max_iterations must be >= 0, got {images.max_iterations}")
    if config.http.max_retry < 1:
        raise ConfigError(f"http.max_retry must be >= 1, got {config.http.max_retry}")
    if config.http.retry_delay < 0:
        raise ConfigError(f"http.retry_delay must be >= 0, got {config.http.retry_delay}")
    if config.dedup_window < 1:
        raise ConfigError(f"dedup_window must be >= 1, got {config.dedup_window}")
    for origin_name in ("arxiv_origin", "ieee_origin"):
        origin = getattr(config, origin_name)
        if not origin.startswith("http"):
            raise ConfigError(f"{origin_name} must begin with http, got: {origin}")


def load_config(path: str | None = None) -> Config:
    if path is None:
        return Config()

    raw = pathlib.Path(path).read_text(encoding="utf-8")
    data = yaml.safe_load(raw) or {}
    if not isinstance(data, dict):
        raise ConfigError(f"config file must be a YAML mapping, got {type(data).__name__}")

    top_level = {"citation", "images", "figures", "math", "http",
                 "output_dir", "dedup_window", "arxiv_origin", "ieee_origin"}
    unknown = set(data) - top_level
    if unknown:
        raise ConfigError(f"unknown config keys: {', '.join(sorted(unknown))}")

    try:
        dedup_window = int(data.get("dedup_window", 50))
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"dedup_window: {exc}") from exc

    config = Config(
        citation=_build(CitationConfig, _section(data, "citation"), "citation"),
        images=_build(ImagesConfig, _section(data, "images"), "images"),
        figures=_build(FiguresConfig, _section(data, "figures"), "figures"),
        math=_build(MathConfig, _section(data, "math"), "math"),
        http=_build(HttpConfig, _section(data, "http"), "http"),
        output_dir=str(data.get("output_dir", "downloads")),
        dedup_window=dedup_window,
        arxiv_origin=str(data.get("arxiv_origin", "https://arxiv.org")).rstrip("/"),
        ieee_origin=str(data.get("ieee_origin", "https://ieeexplore.ieee.org")).rstrip("/"),
    )
    _validate(config)
    return config
