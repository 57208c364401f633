"""Analysis configuration — the tunables shared by the CLI, web API and engine."""

import json
from dataclasses import dataclass, field, fields
from pathlib import Path

DEFAULT_EXTENSIONS = (".mkv", ".mp4", ".m4v", ".mov", ".avi", ".ts", ".m2ts", ".webm")

SIDECAR_VERSIONS = (1, 2)


@dataclass
class AnalysisConfig:
    """Thresholds and tool locations for aspect-ratio analysis."""

    black_threshold: int = 16
    ratio_tolerance: float = 0.05
    min_segment_duration: float = 1.0
    ffprobe_path: str = ""
    ffmpeg_path: str = ""
    hwaccel: str | None = None
    sidecar_version: int = 2
    extensions: tuple[str, ...] = field(default=DEFAULT_EXTENSIONS)

    def __post_init__(self) -> None:
        if not 0 <= self.black_threshold <= 255:
            raise ValueError(f"black_threshold must be within 0-255, got {self.black_threshold}")
        if self.ratio_tolerance <= 0:
            raise ValueError(f"ratio_tolerance must be positive, got {self.ratio_tolerance}")
        if self.min_segment_duration < 0:
            raise ValueError(
                f"min_segment_duration must not be negative, got {self.min_segment_duration}"
            )
        if self.sidecar_version not in SIDECAR_VERSIONS:
            raise ValueError(f"Unsupported sidecar_version {self.sidecar_version}")
        self.extensions = tuple(e.lower() if e.startswith(".") else f".{e.lower()}" for e in self.extensions)

    @property
    def ffprobe(self) -> str:
        return self.ffprobe_path.strip() or "ffprobe"

    @property
    def ffmpeg(self) -> str:
        return self.ffmpeg_path.strip() or "ffmpeg"

    @property
    def cropdetect_limit(self) -> str:
        """Black threshold normalized to cropdetect's 0-1 ``limit`` option."""
        return f"{self.black_threshold / 255.0:.3f}"


def load_config(path: str | Path) -> AnalysisConfig:
    """Load and validate an analysis config from a JSON file."""
    path = Path(path)
    data = json.loads(path.read_text())

    if not isinstance(data, dict):
        raise ValueError("Config must be a JSON object")

    known = {f.name for f in fields(AnalysisConfig)}
    unknown = sorted(set(data) - known)
    if unknown:
        raise ValueError(f"Unknown config keys: {', '.join(unknown)}")

    if "extensions" in data:
        data["extensions"] = tuple(data["extensions"])

    return AnalysisConfig(**data)
