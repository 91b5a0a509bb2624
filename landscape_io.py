"""
landscape_io.py - Read, generate and render one-dimensional landscape profiles.

Features:
- Parse comma-separated heights and the rainfall duration from user input
- Render results with fixed precision for display
- Generate random landscapes for quick experiments
- Extract a row or column transect from a GeoTIFF DEM using rasterio,
  from a path or from uploaded bytes
- Plot terrain and water along the profile
"""

import json
import math
import os
import tempfile
from dataclasses import dataclass
from typing import Optional, Sequence, Tuple

import matplotlib.pyplot as plt
import numpy as np
import rasterio
import structlog
from rasterio.windows import Window

logger = structlog.get_logger()


class ParseError(ValueError):
    """Raised when user input is not a list of finite numbers."""

    def __init__(self, field: str, raw: str):
        self.field = field
        self.raw = raw
        super().__init__(f"Cannot parse {field} data: {json.dumps(raw)}")


@dataclass
class LandscapeProfile:
    """Container for a landscape transect and where it came from."""
    heights: np.ndarray             # 1D array of terrain heights
    source: str                     # file the profile was read from
    axis: str                       # 'row' or 'column'
    index: int                      # row or column number in the raster
    nodata_value: Optional[float]   # original nodata value
    resolution: Tuple[float, float] = (1.0, 1.0)  # (x_res, y_res) in CRS units


def _parse_number(token: str) -> float:
    value = float(token)
    if not math.isfinite(value):
        raise ValueError(f"not a finite number: {token!r}")
    return value


def parse_landscape(text: str) -> np.ndarray:
    """
    Parse a comma-separated list of heights.

    Args:
        text: Raw input such as "3, 1, 6, 4"

    Returns:
        1D float array of heights

    Raises:
        ParseError: If any token is not a finite number
    """
    try:
        heights = [_parse_number(token.strip()) for token in text.split(',')]
    except ValueError:
        logger.warning("Rejected landscape input", raw=text)
        raise ParseError("landscape", text) from None
    return np.array(heights, dtype=np.float64)


def parse_hours(text: str) -> float:
    """Parse the rainfall duration; must be a finite, non-negative number."""
    try:
        hours = _parse_number(text.strip())
    except ValueError:
        hours = -1.0
    if hours < 0:
        logger.warning("Rejected hours input", raw=text)
        raise ParseError("hours", text)
    return hours


def format_number(value: float) -> str:
    """
    Render a number for display.

    Integral values are printed bare; everything else gets between one and
    three fractional digits with thousands grouping.
    """
    value = float(value)
    if math.isnan(value):
        return "NaN"
    if math.isinf(value):
        return "Infinity" if value > 0 else "-Infinity"
    if math.floor(value) == value:
        return str(int(value))

    text = f"{value:,.3f}".rstrip('0')
    if text.endswith('.'):
        text += '0'
    return text


def stringify_result(values: Sequence[float]) -> str:
    """Format every value and join them with ', '."""
    return ", ".join(format_number(value) for value in values)


def random_landscape(
    rng: Optional[np.random.Generator] = None,
    min_length: int = 4,
    max_length: int = 8,
    low: int = 1,
    high: int = 10
) -> np.ndarray:
    """
    Generate a random landscape of integer heights.

    Args:
        rng: NumPy random generator (a fresh one if None)
        min_length: Minimum number of positions (inclusive)
        max_length: Maximum number of positions (inclusive)
        low: Lowest height (inclusive)
        high: Highest height (inclusive)

    Returns:
        1D integer array of heights
    """
    if rng is None:
        rng = np.random.default_rng()
    length = int(rng.integers(min_length, max_length, endpoint=True))
    return rng.integers(low, high, size=length, endpoint=True)


def load_profile(
    filepath: str,
    row: Optional[int] = None,
    column: Optional[int] = None,
    band: int = 1,
    fill_nodata: bool = True
) -> LandscapeProfile:
    """
    Load a landscape transect from a GeoTIFF DEM.

    Args:
        filepath: Path to the GeoTIFF file
        row: Row to extract (middle row if neither row nor column is given)
        column: Column to extract instead of a row
        band: Band number to read (default 1)
        fill_nodata: If True, replace nodata with the nearest valid height

    Returns:
        LandscapeProfile with the heights along the transect
    """
    if row is not None and column is not None:
        raise ValueError("Pass either row or column, not both")

    with rasterio.open(filepath) as src:
        nodata = src.nodata
        resolution = (abs(src.transform.a), abs(src.transform.e))

        if column is not None:
            axis, index = 'column', column
            limit = src.width
            window = Window(column, 0, 1, src.height)
        else:
            axis = 'row'
            index = src.height // 2 if row is None else row
            limit = src.height
            window = Window(0, index, src.width, 1)

        if not 0 <= index < limit:
            raise ValueError(f"{axis} {index} is outside the raster (size {limit})")

        heights = src.read(band, window=window).astype(np.float64).reshape(-1)

    if nodata is not None:
        heights[heights == nodata] = np.nan

    if fill_nodata:
        heights = _fill_nodata(heights)

    logger.info("Loaded landscape profile",
                source=str(filepath), axis=axis, index=index, positions=len(heights))

    return LandscapeProfile(
        heights=heights,
        source=str(filepath),
        axis=axis,
        index=index,
        nodata_value=nodata,
        resolution=resolution
    )


def load_profile_from_bytes(data: bytes, **kwargs) -> LandscapeProfile:
    """
    Load a transect from GeoTIFF contents held in memory, e.g. an upload.

    The bytes go through a temporary file that is removed even when
    reading fails. Keyword arguments are passed on to load_profile.
    """
    with tempfile.NamedTemporaryFile(delete=False, suffix='.tif') as tmp:
        tmp.write(data)
        tmp_path = tmp.name

    try:
        return load_profile(tmp_path, **kwargs)
    finally:
        os.unlink(tmp_path)


def _fill_nodata(heights: np.ndarray) -> np.ndarray:
    """
    Fill NaN values with the nearest valid height.
    """
    from scipy import ndimage

    mask = np.isnan(heights)
    if not mask.any():
        return heights
    if mask.all():
        raise ValueError("Profile contains no valid heights")

    indices = ndimage.distance_transform_edt(
        mask,
        return_distances=False,
        return_indices=True
    )
    return heights[tuple(indices)]


def get_landscape_stats(heights: np.ndarray) -> dict:
    """
    Calculate basic statistics about a profile.
    """
    heights = np.asarray(heights, dtype=np.float64)
    if heights.size == 0:
        return {'length': 0}

    return {
        'length': int(heights.size),
        'min_height': float(np.min(heights)),
        'max_height': float(np.max(heights)),
        'mean_height': float(np.mean(heights)),
        'std_height': float(np.std(heights)),
    }


def plot_profile(
    heights: np.ndarray,
    levels: Optional[np.ndarray] = None,
    title: str = "Landscape Profile",
    figsize: Tuple[int, int] = (10, 4),
    save_path: Optional[str] = None
) -> plt.Figure:
    """
    Draw the terrain as columns with any water stacked on top.

    Args:
        heights: Terrain height per position
        levels: Water surface per position (terrain only if None)
        title: Plot title
        figsize: Figure size
        save_path: Optional path to save the figure

    Returns:
        Matplotlib Figure object
    """
    heights = np.asarray(heights, dtype=np.float64)
    positions = np.arange(heights.size)

    fig, ax = plt.subplots(figsize=figsize)
    ax.bar(positions, heights, width=1.0, color='#a0785a', edgecolor='#5c4033',
           linewidth=0.5, label='Terrain')

    if levels is not None:
        depths = np.asarray(levels, dtype=np.float64) - heights
        ax.bar(positions, depths, width=1.0, bottom=heights, color='#3399ff',
               alpha=0.8, label='Water')
        ax.legend(loc='upper left', fontsize=8)

    ax.set_xlabel('Position')
    ax.set_ylabel('Height')
    ax.set_title(title)
    ax.grid(True, axis='y', alpha=0.3, linestyle='--')

    if save_path:
        fig.savefig(save_path, dpi=150, bbox_inches='tight')

    return fig
