"""Region-local pixel effects applied in place to a cairo surface.

Both effects read the surface as it stands when they run, so anything drawn
earlier is included and anything drawn later stays sharp on top. Averages are
integer (floor) so output is byte-for-byte reproducible.
"""

import cairo
import numpy as np

from .frame import pixel_view
from .geometry import Rect

MIN_PIXELATE_BLOCK = 2
MAX_BLUR_RADIUS = 12


def _region_view(surface: cairo.ImageSurface, region: Rect):
    bounds = Rect(0, 0, surface.get_width(), surface.get_height())
    clipped = region.intersect(bounds)
    if clipped is None:
        return None, None
    pixels = pixel_view(surface)
    view = pixels[clipped.y:clipped.bottom, clipped.x:clipped.right]
    return clipped, view


def pixelate(surface: cairo.ImageSurface, region: Rect, block_size: int) -> bool:
    """Replace each block of region with its average color.

    Blocks are anchored at the region's top-left corner; partial blocks on
    the right and bottom edges average only the pixels they cover.
    """
    clipped, view = _region_view(surface, region)
    if view is None:
        return False
    block = max(int(block_size), MIN_PIXELATE_BLOCK)
    height, width = view.shape[:2]
    for y in range(0, height, block):
        for x in range(0, width, block):
            cell = view[y:y + block, x:x + block]
            count = cell.shape[0] * cell.shape[1]
            avg = cell.reshape(-1, 4).sum(axis=0, dtype=np.uint64) // count
            cell[:, :] = avg.astype(np.uint8)
    surface.mark_dirty()
    return True


def blur(surface: cairo.ImageSurface, region: Rect, radius: int) -> bool:
    """Box blur restricted to region; the averaging window never leaves it."""
    clipped, view = _region_view(surface, region)
    if view is None:
        return False
    radius = max(1, min(int(radius), MAX_BLUR_RADIUS))
    height, width = view.shape[:2]

    # Summed-area table with a leading zero row and column.
    table = np.zeros((height + 1, width + 1, 4), dtype=np.int64)
    table[1:, 1:] = view.astype(np.int64).cumsum(axis=0).cumsum(axis=1)

    ys = np.arange(height)
    xs = np.arange(width)
    y0 = np.maximum(ys - radius, 0)
    y1 = np.minimum(ys + radius, height - 1) + 1
    x0 = np.maximum(xs - radius, 0)
    x1 = np.minimum(xs + radius, width - 1) + 1

    total = (
        table[np.ix_(y1, x1)]
        - table[np.ix_(y0, x1)]
        - table[np.ix_(y1, x0)]
        + table[np.ix_(y0, x0)]
    )
    count = ((y1 - y0)[:, None] * (x1 - x0)[None, :])[:, :, None]
    view[:, :] = (total // count).astype(np.uint8)
    surface.mark_dirty()
    return True
