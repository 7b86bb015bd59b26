from __future__ import annotations

import json
import math
import pathlib
from dataclasses import dataclass, field, fields, replace
from typing import Any, Dict, Optional, Tuple

DEFAULT_BUCKET_COUNT = 10
DEFAULT_COLOR_STEPS: Tuple[str, ...] = (
    "#67000d",
    "#a50f15",
    "#cb181d",
    "#ef3b2c",
    "#fb6a4a",
    "#fc9272",
    "#fcbba1",
    "#fee0d2",
    "#fff5f0",
)
LOG_FILE_PATH = pathlib.Path.cwd() / "conformance_viz.log"


@dataclass(frozen=True)
class VizConfig:
    """
    Presentation constants shared by the pipeline and the viewer.

    Bubble radius is `min_radius + (count / max_count) * radius_scale`, so the
    largest bucket is drawn at `max_radius`.
    """

    bucket_count: int = DEFAULT_BUCKET_COUNT
    color_steps: Tuple[str, ...] = DEFAULT_COLOR_STEPS
    min_radius: float = 5.0
    radius_scale: float = 30.0
    log_file: pathlib.Path = field(default=LOG_FILE_PATH)

    def __post_init__(self) -> None:
        if self.bucket_count < 1:
            raise ValueError(f"bucket_count must be >= 1, got {self.bucket_count}")
        if not self.color_steps:
            raise ValueError("color_steps must contain at least one colour")
        if self.min_radius < 0 or self.radius_scale < 0:
            raise ValueError("Bubble radius settings must be non-negative")

    @property
    def max_radius(self) -> float:
        return self.min_radius + self.radius_scale


def color_for_value(value: float, steps: Tuple[str, ...] = DEFAULT_COLOR_STEPS) -> str:
    """Map a conformance value in [0, 1] onto one of the colour steps."""
    if not math.isfinite(value):
        return steps[0]
    index = math.floor(value * len(steps))
    return steps[min(max(index, 0), len(steps) - 1)]


def load_config(path: Optional[pathlib.Path] = None) -> VizConfig:
    """
    Build a `VizConfig`, optionally overriding defaults from a JSON file.
    """
    if path is None:
        return VizConfig()

    raw: Dict[str, Any] = json.loads(pathlib.Path(path).read_text(encoding="utf-8"))
    if not isinstance(raw, dict):
        raise ValueError(f"Config file {path} must contain a JSON object")

    known = {f.name for f in fields(VizConfig)}
    unknown = set(raw) - known
    if unknown:
        raise ValueError(f"Unknown config keys: {', '.join(sorted(unknown))}")

    overrides: Dict[str, Any] = dict(raw)
    if "color_steps" in overrides:
        overrides["color_steps"] = tuple(overrides["color_steps"])
    if "log_file" in overrides:
        overrides["log_file"] = pathlib.Path(overrides["log_file"])
    return replace(VizConfig(), **overrides)
