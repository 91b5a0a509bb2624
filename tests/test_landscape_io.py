"""Tests for landscape parsing, rendering and loading."""

import tempfile

import numpy as np
import pytest
import rasterio
from matplotlib.figure import Figure
from rasterio.transform import from_origin

from landscape_io import (
    LandscapeProfile, ParseError, format_number, get_landscape_stats,
    load_profile, load_profile_from_bytes, parse_hours, parse_landscape,
    plot_profile, random_landscape, stringify_result
)


class TestParsing:
    """Test user input parsing."""

    def test_parse_landscape(self):
        heights = parse_landscape("3, 1,6 ,  4.5")

        np.testing.assert_array_equal(heights, [3, 1, 6, 4.5])
        assert heights.dtype == np.float64

    @pytest.mark.parametrize("raw", ["3, x, 1", "", "1,,2", "1, inf", "nan", "1; 2"])
    def test_parse_landscape_rejects_bad_tokens(self, raw):
        with pytest.raises(ParseError) as excinfo:
            parse_landscape(raw)

        assert excinfo.value.raw == raw
        assert excinfo.value.field == "landscape"

    def test_parse_error_message_quotes_raw_text(self):
        with pytest.raises(ParseError, match=r'Cannot parse landscape data: "3, x"'):
            parse_landscape("3, x")

    def test_parse_error_is_value_error(self):
        with pytest.raises(ValueError):
            parse_landscape("abc")

    @pytest.mark.parametrize("raw, expected", [("1", 1.0), (" 2.5 ", 2.5), ("0", 0.0)])
    def test_parse_hours(self, raw, expected):
        assert parse_hours(raw) == expected

    @pytest.mark.parametrize("raw", ["", "two", "-1", "inf", "1, 2"])
    def test_parse_hours_rejects_bad_input(self, raw):
        with pytest.raises(ParseError) as excinfo:
            parse_hours(raw)

        assert excinfo.value.field == "hours"


class TestFormatting:
    """Test result rendering."""

    @pytest.mark.parametrize("value, expected", [
        (4, "4"),
        (4.0, "4"),
        (0, "0"),
        (2.5, "2.5"),
        (1 / 3, "0.333"),
        (2 / 3, "0.667"),
        (10 / 3, "3.333"),
        (0.9999, "1.0"),
        (1234.5, "1,234.5"),
        (-1.25, "-1.25"),
        (np.float64(6.0), "6"),
        (np.int64(7), "7"),
    ])
    def test_format_number(self, value, expected):
        assert format_number(value) == expected

    def test_format_non_finite(self):
        assert format_number(float('inf')) == "Infinity"
        assert format_number(float('nan')) == "NaN"

    def test_stringify_result(self):
        assert stringify_result([4, 4.5, 1 / 3]) == "4, 4.5, 0.333"

    def test_stringify_empty(self):
        assert stringify_result([]) == ""


class TestRandomLandscape:
    """Test random landscape generation."""

    def test_bounds(self):
        rng = np.random.default_rng(7)

        for _ in range(200):
            heights = random_landscape(rng)
            assert 4 <= len(heights) <= 8
            assert heights.min() >= 1
            assert heights.max() <= 10

    def test_reproducible_with_seed(self):
        first = random_landscape(np.random.default_rng(3))
        second = random_landscape(np.random.default_rng(3))

        np.testing.assert_array_equal(first, second)

    def test_custom_range(self):
        heights = random_landscape(np.random.default_rng(1), min_length=3, max_length=3, low=5, high=5)

        np.testing.assert_array_equal(heights, [5, 5, 5])

    def test_round_trips_through_parser(self):
        heights = random_landscape(np.random.default_rng(11))

        np.testing.assert_array_equal(parse_landscape(stringify_result(heights)), heights)


class TestLoadProfile:
    """Test reading transects from GeoTIFF files."""

    @pytest.fixture
    def dem_path(self, tmp_path):
        data = np.array([
            [1, 2, 3],
            [4, 5, -9999],
            [7, 8, 9],
        ], dtype=np.float32)
        path = tmp_path / "dem.tif"

        with rasterio.open(
            path, 'w',
            driver='GTiff',
            height=3,
            width=3,
            count=1,
            dtype='float32',
            crs='EPSG:4326',
            transform=from_origin(100.0, 13.0, 0.5, 0.5),
            nodata=-9999
        ) as dst:
            dst.write(data, 1)

        return path

    def test_middle_row_by_default(self, dem_path):
        profile = load_profile(str(dem_path))

        assert isinstance(profile, LandscapeProfile)
        assert profile.axis == 'row'
        assert profile.index == 1
        assert profile.nodata_value == -9999
        assert profile.resolution == (0.5, 0.5)
        np.testing.assert_array_equal(profile.heights, [4, 5, 5])

    def test_specific_row(self, dem_path):
        profile = load_profile(str(dem_path), row=0)

        np.testing.assert_array_equal(profile.heights, [1, 2, 3])

    def test_column(self, dem_path):
        profile = load_profile(str(dem_path), column=0)

        assert profile.axis == 'column'
        np.testing.assert_array_equal(profile.heights, [1, 4, 7])

    def test_nodata_kept_when_not_filled(self, dem_path):
        profile = load_profile(str(dem_path), fill_nodata=False)

        assert np.isnan(profile.heights[2])

    def test_out_of_range_row(self, dem_path):
        with pytest.raises(ValueError):
            load_profile(str(dem_path), row=3)

    def test_row_and_column_are_exclusive(self, dem_path):
        with pytest.raises(ValueError):
            load_profile(str(dem_path), row=0, column=0)

    def test_from_bytes(self, dem_path):
        profile = load_profile_from_bytes(dem_path.read_bytes(), row=2)

        np.testing.assert_array_equal(profile.heights, [7, 8, 9])

    def test_from_bytes_removes_temp_file(self, dem_path, tmp_path, monkeypatch):
        scratch = tmp_path / "scratch"
        scratch.mkdir()
        monkeypatch.setattr(tempfile, "tempdir", str(scratch))

        load_profile_from_bytes(dem_path.read_bytes())

        assert list(scratch.iterdir()) == []

    def test_from_bytes_removes_temp_file_on_error(self, dem_path, tmp_path, monkeypatch):
        scratch = tmp_path / "scratch"
        scratch.mkdir()
        monkeypatch.setattr(tempfile, "tempdir", str(scratch))

        with pytest.raises(ValueError):
            load_profile_from_bytes(dem_path.read_bytes(), row=3)

        assert list(scratch.iterdir()) == []


class TestStatsAndPlot:
    """Test profile statistics and plotting."""

    def test_stats(self):
        stats = get_landscape_stats(np.array([1.0, 3.0, 5.0]))

        assert stats['length'] == 3
        assert stats['min_height'] == 1.0
        assert stats['max_height'] == 5.0
        assert stats['mean_height'] == 3.0

    def test_stats_empty(self):
        assert get_landscape_stats(np.array([])) == {'length': 0}

    def test_plot_terrain_only(self):
        fig = plot_profile([3, 1, 6])

        assert isinstance(fig, Figure)
        assert len(fig.axes[0].patches) == 3

    def test_plot_with_water(self, tmp_path):
        out = tmp_path / "profile.png"
        fig = plot_profile([3, 1, 6, 4, 8, 9], [4, 4, 6, 6, 8, 9], save_path=str(out))

        assert len(fig.axes[0].patches) == 12
        assert out.exists()
