"""I/O utilities for reading and writing multi-resolution exports.

This module contains:
- ``open_group``: open a zarr group from a local path, ZIP file or remote URL
- ``ZarrExportReader``: lazy (dask) access to ``c{channel}/s{level}`` arrays
- ``write_export``: write multi-channel pyramids in the export layout

Arrays are stored in (z, y, x) order on disk and exposed in (x, y, z) order,
which is the index order used throughout the crop engine.
"""

from __future__ import annotations

from typing import Any, Dict, Optional, Sequence, Union

import dask.array as da
import fsspec
import numpy as np
import zarr

from .exceptions import MetadataError, StorageReadError
from .logging import get_logger
from .metadata import (
    AFFINE_TRANSFORM_KEY,
    NAME_KEY,
    PIXEL_RESOLUTION_KEY,
    SCALES_KEY,
    ExportMetadata,
    PixelResolution,
    channel_group_path,
    scale_level_dataset_path,
    validate_scales,
)
from .transform import AffineTransform

logger = get_logger(__name__)


def open_group(
    store_or_path: Union[str, Any],
    storage_options: Optional[Dict[str, Any]] = None,
):
    """
    Open a zarr group read-only.

    Args:
        store_or_path: Local path, ``.zip`` path, remote URL, or zarr store
        storage_options: Options for fsspec when opening remote stores

    Returns:
        tuple: (zarr group, store to close or None)

    Raises:
        StorageReadError: If the store cannot be opened
    """
    store_to_close = None
    try:
        if isinstance(store_or_path, str) and store_or_path.endswith(".zip"):
            store_to_close = zarr.storage.ZipStore(store_or_path, mode="r")
            group = zarr.open_group(store_to_close, mode="r")
        elif isinstance(store_or_path, str) and storage_options:
            mapper = fsspec.get_mapper(store_or_path, **storage_options)
            group = zarr.open_group(mapper, mode="r")
        else:
            group = zarr.open_group(store_or_path, mode="r")
    except (KeyError, OSError, ValueError) as e:
        if store_to_close is not None:
            store_to_close.close()
        raise StorageReadError(f"Unable to open store {store_or_path!r}: {e}") from e
    return group, store_to_close


class _GuardedLevel:
    """Array wrapper that reports chunk read failures as StorageReadError."""

    def __init__(self, array, channel: int, level: int):
        self.array = array
        self.channel = channel
        self.level = level
        self.shape = array.shape
        self.dtype = array.dtype
        self.ndim = array.ndim

    def __getitem__(self, key):
        try:
            return self.array[key]
        except Exception as e:
            raise StorageReadError(
                f"Unable to read {scale_level_dataset_path(self.channel, self.level)!r}"
                f" at {key}: {e}",
                channel=self.channel,
                level=self.level,
            ) from e


class ZarrExportReader:
    """
    Lazy reader for stores in the export layout.

    Levels are returned as dask arrays backed by the zarr arrays, so opening
    a level reads only metadata; pixel data is fetched chunk by chunk when
    a crop is computed. Chunk read failures are raised as StorageReadError
    naming the channel and level.

    Args:
        store_or_path: Local path, ``.zip`` path, remote URL, or zarr store
        storage_options: Options for fsspec when opening remote stores
    """

    def __init__(
        self,
        store_or_path: Union[str, Any],
        storage_options: Optional[Dict[str, Any]] = None,
    ):
        self.store_or_path = store_or_path
        self.group, self._store = open_group(store_or_path, storage_options)
        self._metadata = None

    @property
    def metadata(self) -> ExportMetadata:
        if self._metadata is None:
            self._metadata = ExportMetadata.from_group(self.group)
        return self._metadata

    def open_level(self, channel: int, level: int) -> da.Array:
        """
        Open one resolution level of a channel as an (x, y, z) dask array.

        Raises:
            StorageReadError: If the array does not exist, or later when one of
                its chunks cannot be read or decoded
        """
        path = scale_level_dataset_path(channel, level)
        try:
            arr = self.group[path]
            darr = da.from_array(
                _GuardedLevel(arr, channel, level),
                chunks=arr.chunks,
                name=False,
                meta=np.empty((0,) * arr.ndim, dtype=arr.dtype),
            )
        except (KeyError, OSError, ValueError) as e:
            raise StorageReadError(
                f"Unable to open dataset {path!r}: {e}", channel=channel, level=level
            ) from e
        logger.debug("Opened %s with shape %s", path, arr.shape)
        # stored (z, y, x); expose (x, y, z)
        return darr.transpose()

    def close(self) -> None:
        if self._store is not None:
            self._store.close()
            self._store = None

    def __enter__(self) -> "ZarrExportReader":
        return self

    def __exit__(self, *exc) -> None:
        self.close()


def downsample_by_striding(data, factors: Sequence[float]):
    """Pick every ``factors[d]``-th voxel along each axis (integer factors only)."""
    steps = []
    for f in factors:
        if float(f) != int(f):
            raise MetadataError(
                f"Only integer scale factors can be generated, got {list(factors)}"
            )
        steps.append(slice(None, None, int(f)))
    return data[tuple(steps)]


def write_export(
    store_path: str,
    channels: Sequence[Any],
    scales: Optional[Sequence[Sequence[float]]] = None,
    pixel_resolution: Optional[Union[PixelResolution, Sequence[float]]] = None,
    affine: Optional[Union[AffineTransform, np.ndarray]] = None,
    name: Optional[str] = None,
    chunks: Union[int, Sequence[int]] = 64,
    channel_attrs: Optional[Dict[int, Dict[str, Any]]] = None,
) -> ExportMetadata:
    """
    Write channels as a multi-resolution pyramid in the export layout.

    Args:
        store_path: Target directory
        channels: Level-0 arrays, one per channel, indexed (x, y, z)
        scales: Per-level downsampling factors in (x, y, z), default
            ``[[1, 1, 1]]``. Lower levels are generated by striding.
        pixel_resolution: Voxel size for all channels
        affine: Affine transform for all channels (3x4 or 4x4)
        name: Dataset name stored in the root attributes
        chunks: Chunk shape in (x, y, z), or a single int for all axes
        channel_attrs: Extra per-channel attributes overriding the root

    Returns:
        ExportMetadata describing what was written
    """
    if scales is None:
        scales = [[1, 1, 1]]
    scales_arr = validate_scales(scales)

    root = zarr.open_group(store_path, mode="w")
    root_attrs = {SCALES_KEY: scales_arr.tolist()}
    if name is not None:
        root_attrs[NAME_KEY] = name
    if pixel_resolution is not None:
        if not isinstance(pixel_resolution, PixelResolution):
            pixel_resolution = PixelResolution.from_metadata(pixel_resolution)
        root_attrs[PIXEL_RESOLUTION_KEY] = pixel_resolution.to_metadata()
    if affine is not None:
        root_attrs[AFFINE_TRANSFORM_KEY] = np.asarray(affine)[:3, :].tolist()
    root.attrs.update(root_attrs)

    channel_attrs = channel_attrs or {}
    for channel, data in enumerate(channels):
        group = root.require_group(channel_group_path(channel))
        if channel in channel_attrs:
            group.attrs.update(channel_attrs[channel])

        for level, factors in enumerate(scales_arr):
            level_data = np.asarray(downsample_by_striding(data, factors))
            # store (z, y, x)
            zyx = np.ascontiguousarray(level_data.transpose())
            if isinstance(chunks, int):
                level_chunks = tuple(min(chunks, s) for s in zyx.shape)
            else:
                level_chunks = tuple(
                    min(c, s) for c, s in zip(reversed(tuple(chunks)), zyx.shape)
                )
            arr = zarr.create(
                shape=zyx.shape,
                chunks=level_chunks,
                dtype=zyx.dtype,
                store=store_path,
                path=scale_level_dataset_path(channel, level),
                overwrite=True,
            )
            arr[...] = zyx
            logger.debug(
                "Wrote %s with shape %s",
                scale_level_dataset_path(channel, level),
                zyx.shape,
            )

    return ExportMetadata(
        root_attrs=root_attrs,
        channel_attrs={c: dict(channel_attrs.get(c, {})) for c in range(len(channels))},
        num_channels=len(channels),
    )
