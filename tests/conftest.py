"""Shared test fixtures."""

from pathlib import Path

import pytest

from varatio.config import AnalysisConfig
from varatio.models import AnalysisResult, AspectRatioSegment, VideoInfo

FIXTURES_DIR = Path(__file__).parent / "fixtures"


@pytest.fixture
def sample_config_path() -> Path:
    return FIXTURES_DIR / "sample_config.json"


@pytest.fixture
def sidecar_v1_path() -> Path:
    return FIXTURES_DIR / "sample_v1.var"


@pytest.fixture
def sidecar_v2_path() -> Path:
    return FIXTURES_DIR / "sample_v2.var"


@pytest.fixture
def config() -> AnalysisConfig:
    return AnalysisConfig()


@pytest.fixture
def scope_info() -> VideoInfo:
    return VideoInfo(width=1920, height=1080, duration=120.0)


@pytest.fixture
def variable_result() -> AnalysisResult:
    return AnalysisResult(
        segments=[
            AspectRatioSegment(start=0.0, end=10.4, ratio=2.39, label="2.39:1"),
            AspectRatioSegment(start=10.4, end=75.25, ratio=1.85, label="1.85:1"),
            AspectRatioSegment(start=75.25, end=3725.5, ratio=2.39, label="2.39:1"),
        ],
        frame_width=1920,
        frame_height=1080,
    )
