"""Shared data types used across VARatio."""

from dataclasses import dataclass, field


@dataclass(frozen=True)
class VideoInfo:
    """Frame geometry and duration extracted from a media file via ffprobe."""

    width: int
    height: int
    duration: float


@dataclass(frozen=True)
class Sample:
    """One cropdetect measurement.

    ``ratio`` is None when the frame could not be classified (title card,
    windowboxed frame, tiny crop area).
    """

    time: float
    ratio: float | None = None

    @property
    def known(self) -> bool:
        return self.ratio is not None


@dataclass(frozen=True)
class AspectRatioSegment:
    """A time range of the video shown at a single aspect ratio."""

    start: float
    end: float
    ratio: float
    label: str

    @property
    def duration(self) -> float:
        return self.end - self.start


@dataclass
class AnalysisResult:
    """Output of one analysis run."""

    segments: list[AspectRatioSegment] = field(default_factory=list)
    frame_width: int = 0
    frame_height: int = 0

    @property
    def has_variable_ratios(self) -> bool:
        return len(self.segments) > 1


@dataclass(frozen=True)
class VarSegment:
    """Read-side segment: the end is implied by the next segment's start."""

    start: float
    aspect_ratio: float


@dataclass(frozen=True)
class VarTimeline:
    """A parsed sidecar file, ready for building crop filters."""

    frame_width: int
    frame_height: int
    segments: tuple[VarSegment, ...]
