"""
Tests for legend localisation and swatch sampling
"""

import pytest

from conftest import blank_plan, draw_box
from infrastructure.utils.raster_io import PlanImage
from services.error_types import ConfigurationError
from services.legend_segmenter import LegendSegmenter, legend_bounds
from services.takeoff_config import LegendLocationConfig, PatternSamplingConfig


class TestLegendBounds:
    """Test corner placement of the legend block"""

    @pytest.mark.parametrize("location,expected", [
        ("bottom-right", (650, 700, 300, 250)),
        ("bottom-left", (50, 700, 300, 250)),
        ("top-right", (650, 50, 300, 250)),
        ("top-left", (50, 50, 300, 250)),
    ])
    def test_corners(self, location, expected):
        """Test the legend box in each corner"""
        assert legend_bounds(1000, 1000, LegendLocationConfig(location=location)) == expected

    def test_small_plan_is_clipped(self):
        """Test that the legend box stays inside a small plan"""
        x, y, w, h = legend_bounds(100, 80, LegendLocationConfig(location="bottom-right"))
        assert x >= 0 and y >= 0
        assert x + w <= 100
        assert y + h <= 80
        assert w > 0 and h > 0

    def test_unknown_corner_raises(self):
        """Test that an unknown corner name is a configuration error"""
        with pytest.raises(ConfigurationError):
            legend_bounds(1000, 1000, LegendLocationConfig(location="center"))


class TestLegendSegmenter:
    """Test swatch extraction on a synthetic legend"""

    def segmenter(self) -> LegendSegmenter:
        return LegendSegmenter(LegendLocationConfig(location="bottom-right"),
                               PatternSamplingConfig(sample_size=50))

    def test_blank_legend_has_no_swatches(self):
        """Test that an empty legend yields no swatches"""
        segmentation = self.segmenter().segment(PlanImage(blank_plan()))
        assert segmentation.bounds == (650, 700, 300, 250)
        assert segmentation.swatches == []

    def test_swatch_is_sampled_at_grid_position(self, square_plan):
        """Test swatch position, size and content"""
        segmentation = self.segmenter().segment(square_plan)

        first = segmentation.swatches[0]
        assert first.id == "pattern_1"
        assert first.location == (40, 40)
        assert first.plan_location == (690, 740)
        assert first.image.shape == (50, 50)
        assert int(first.image.pixels.max()) == 0

    def test_swatch_ids_are_sequential(self, square_plan):
        """Test that swatch ids count up from pattern_1"""
        swatches = self.segmenter().segment(square_plan).swatches
        assert [s.id for s in swatches] == [f"pattern_{i + 1}" for i in range(len(swatches))]

    def test_right_half_is_not_sampled(self):
        """Test that label text in the right half is not sampled"""
        pixels = blank_plan()
        # legend-local x 200 lies in the right half of a 300px legend
        draw_box(pixels, 850, 740, 50, 50)
        segmentation = self.segmenter().segment(PlanImage(pixels))
        assert segmentation.swatches == []

    def test_hit_skips_one_sample_width(self):
        """Test that a hit moves the scan one sample width on"""
        pixels = blank_plan()
        # ink spans legend x 40..120; without the skip the ink check at x=80 would hit again
        draw_box(pixels, 690, 740, 80, 30)
        segmenter = LegendSegmenter(LegendLocationConfig(location="bottom-right"),
                                    PatternSamplingConfig(sample_size=50))
        swatches = segmenter.segment(PlanImage(pixels)).swatches
        row = [s.location for s in swatches if s.location[1] == 40]
        assert row == [(40, 40)]

    def test_has_pattern_checks_ink_square(self):
        """Test the ink check at a grid position"""
        legend = PlanImage(blank_plan(100, 100))
        segmenter = self.segmenter()
        assert segmenter.has_pattern(legend, 10, 10) is False

        pixels = blank_plan(100, 100)
        draw_box(pixels, 10, 10, 20, 20)
        assert segmenter.has_pattern(PlanImage(pixels), 10, 10) is True
        assert segmenter.has_pattern(PlanImage(pixels), 95, 95) is False
