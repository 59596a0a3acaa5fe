"""Lazy, boundary-safe views on level arrays.

All views are dask arrays: nothing is read from storage until the view (or a
part of it) is computed.
"""

from __future__ import annotations

from typing import Any, List, Sequence

import dask.array as da


def as_dask(data: Any) -> da.Array:
    """Wrap an array-like as a dask array, leaving dask arrays untouched."""
    if isinstance(data, da.Array):
        return data
    inner = getattr(data, "data", None)
    if isinstance(inner, da.Array):
        # VolatileArray and similar wrappers
        return inner
    return da.from_array(data)


def zero_extended_offset_view(
    data: Any, box_min: Sequence[int], box_size: Sequence[int]
) -> da.Array:
    """
    View of ``data[min : min + size]`` with zeros outside the array bounds.

    The returned array always has shape ``box_size`` and its index 0 maps to
    ``box_min`` in ``data``. Boxes that lie partly or entirely outside the
    data are filled with the dtype's zero.

    Args:
        data: Array-like indexed (x, y, z)
        box_min: First pixel of the box, may be negative or past the end
        box_size: Extent of the box per axis, all positive

    Returns:
        Lazy dask array of shape ``box_size``

    Raises:
        ValueError: If dimensions do not match or a size is not positive
    """
    darr = as_dask(data)
    if len(box_min) != darr.ndim or len(box_size) != darr.ndim:
        raise ValueError(
            f"Box {tuple(box_min)}+{tuple(box_size)} does not match "
            f"{darr.ndim}-dimensional data"
        )
    if any(s <= 0 for s in box_size):
        raise ValueError(f"Box size must be positive, got {tuple(box_size)}")

    lo = [min(max(int(m), 0), n) for m, n in zip(box_min, darr.shape)]
    hi = [
        max(min(int(m) + int(s), n), 0)
        for m, s, n in zip(box_min, box_size, darr.shape)
    ]

    if any(h <= l for l, h in zip(lo, hi)):
        return da.zeros(tuple(int(s) for s in box_size), dtype=darr.dtype)

    inner = darr[tuple(slice(l, h) for l, h in zip(lo, hi))]
    pad_width = [
        (l - int(m), int(m) + int(s) - h)
        for l, h, m, s in zip(lo, hi, box_min, box_size)
    ]
    if all(before == 0 and after == 0 for before, after in pad_width):
        return inner
    return da.pad(inner, pad_width, mode="constant", constant_values=0)


def stack_channels(crops: List[da.Array]) -> da.Array:
    """Stack equally shaped (x, y, z) crops along a new trailing channel axis."""
    return da.stack(crops, axis=-1)


def swap_channel_and_depth(stack: da.Array) -> da.Array:
    """Reorder an (x, y, z, c) stack to (x, y, c, z)."""
    return da.swapaxes(stack, 2, 3)
