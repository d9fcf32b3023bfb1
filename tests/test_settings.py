"""Tests for configuration and logging setup."""

import pytest
import structlog
from pydantic import ValidationError

from py_terragen.config import CompositorSettings, Settings, get_settings
from py_terragen.core.contours import ContourExtractor
from py_terragen.utils import configure_logging


@pytest.fixture
def fresh_settings():
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


class TestSettings:
    """Test library settings."""

    def test_defaults(self):
        settings = Settings()
        assert settings.mask_threshold == 0.5
        assert settings.contour_trace_cap == 2000
        assert settings.simplify_tolerance == 0.5
        assert settings.mesh_height_offset == pytest.approx(0.1)

    def test_environment_override(self, monkeypatch, fresh_settings):
        monkeypatch.setenv("TERRAGEN_CONTOUR_TRACE_CAP", "50")
        monkeypatch.setenv("TERRAGEN_MASK_THRESHOLD", "0.25")

        assert get_settings().contour_trace_cap == 50
        extractor = ContourExtractor()
        assert extractor.trace_cap == 50
        assert extractor.threshold == 0.25

    def test_validation(self):
        with pytest.raises(ValidationError):
            Settings(mask_threshold=1.5)
        with pytest.raises(ValidationError):
            Settings(contour_trace_cap=0)


class TestCompositorSettings:
    """Test compositing settings."""

    def test_keywords_are_lowercased(self):
        settings = CompositorSettings(water_keywords=["Marsh", "FJORD"])
        assert settings.water_keywords == ["marsh", "fjord"]

    def test_terrain_keywords(self):
        keywords = CompositorSettings().terrain_keywords()
        assert keywords[:6] == ["water", "river", "lake", "ocean", "mountain", "hill"]
        assert "forest" in keywords
        assert len(keywords) == len(set(keywords))

    def test_terrain_labels_are_keywords(self):
        settings = CompositorSettings(terrain_labels=["Glacier", "Tundra"])
        assert settings.terrain_labels == ["glacier", "tundra"]
        keywords = settings.terrain_keywords()
        assert keywords[-2:] == ["glacier", "tundra"]
        assert "peak" in CompositorSettings().terrain_keywords()

    def test_hue_range_must_be_ordered(self):
        with pytest.raises(ValidationError):
            CompositorSettings(object_hue_range=(0.8, 0.2))
        with pytest.raises(ValidationError):
            CompositorSettings(terrain_hue_range=(0.0, 1.5))

    def test_threshold_bounds(self):
        with pytest.raises(ValidationError):
            CompositorSettings(skip_alpha=-0.1)


class TestLogging:
    """Test logging configuration."""

    @pytest.mark.parametrize("fmt", ["console", "json"])
    def test_configure_logging(self, fmt):
        configure_logging(level="debug", fmt=fmt)
        logger = structlog.get_logger("py_terragen.test")
        logger.info("configured", fmt=fmt)
        structlog.reset_defaults()
