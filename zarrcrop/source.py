"""Multi-resolution image sources with a voxel-to-world transform chain.

A source bundles the resolution pyramid of one channel with the transforms
that map each level's pixel grid into a shared world space::

    world = channel_transform @ diag(normalized_voxel_size) @ mipmap(level) @ pixel

``mipmap(level)`` scales a level's pixels to level-0 pixels and shifts them
by half the downsampling factor minus one half, so that a coarse pixel centre
sits at the centre of the fine pixels it covers.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional, Sequence, Tuple

import numpy as np
from attrs import define, field

from .exceptions import LevelRangeError, MetadataError
from .logging import get_logger
from .metadata import ExportMetadata, validate_scales
from .transform import AffineTransform
from .volatile import FetchQueue, VolatileArray

logger = get_logger(__name__)


def normalized_voxel_size(voxel_size: Sequence[float]) -> Tuple[float, ...]:
    """
    Rescale a voxel size so that its smallest component is 1.0.

    Args:
        voxel_size: Physical size of a voxel per axis

    Returns:
        Voxel size divided by its minimum component

    Raises:
        MetadataError: If the voxel size is empty or not strictly positive

    Examples:
        >>> normalized_voxel_size([2.0, 4.0, 8.0])
        (1.0, 2.0, 4.0)
    """
    arr = np.asarray(voxel_size, dtype=float)
    if arr.size == 0 or np.any(arr <= 0):
        raise MetadataError(f"Voxel sizes must be positive, got {list(voxel_size)}")
    return tuple(float(v) for v in arr / arr.min())


@define
class MultiResolutionSource:
    """
    Resolution pyramid of one channel.

    Attributes:
        levels: Level arrays indexed (x, y, z), finest first
        mipmap_scales: Downsampling factors, shape (num_levels, ndim)
        voxel_size: Physical voxel size at level 0, or None
        unit: Physical unit of ``voxel_size``
        channel_transform: Transform applied after voxel scaling, or None
        name: Display name
    """

    levels: List[Any]
    mipmap_scales: np.ndarray = field(converter=lambda s: validate_scales(s))
    voxel_size: Optional[Tuple[float, ...]] = None
    unit: str = "pixel"
    channel_transform: Optional[AffineTransform] = None
    name: Optional[str] = None

    def __attrs_post_init__(self):
        if len(self.levels) == 0:
            raise MetadataError("A multi-resolution source needs at least one level")
        if len(self.levels) != len(self.mipmap_scales):
            raise MetadataError(
                f"{len(self.levels)} level arrays but {len(self.mipmap_scales)} scales"
            )
        ndim = self.mipmap_scales.shape[1]
        for level, arr in enumerate(self.levels):
            if len(arr.shape) != ndim:
                raise MetadataError(
                    f"Level {level} has {len(arr.shape)} dimensions, scales have {ndim}"
                )
        if self.voxel_size is not None and len(self.voxel_size) != ndim:
            raise MetadataError(
                f"Voxel size {self.voxel_size} does not have {ndim} dimensions"
            )

    @property
    def num_mipmap_levels(self) -> int:
        return len(self.levels)

    @property
    def num_dimensions(self) -> int:
        return int(self.mipmap_scales.shape[1])

    @property
    def dtype(self):
        return self.levels[0].dtype

    def check_level(self, level: int, channel: int = 0) -> None:
        """Raise LevelRangeError unless ``0 <= level < num_mipmap_levels``."""
        if level < 0 or level >= self.num_mipmap_levels:
            raise LevelRangeError(channel, level, (0, self.num_mipmap_levels - 1))

    def get_source(self, level: int):
        """Pixel array of a level, indexed (x, y, z)."""
        self.check_level(level)
        return self.levels[level]

    def get_level_dimensions(self, level: int) -> Tuple[int, ...]:
        return tuple(self.get_source(level).shape)

    def mipmap_transform(self, level: int) -> AffineTransform:
        """Map level pixels to level-0 pixels."""
        self.check_level(level)
        factors = self.mipmap_scales[level]
        return AffineTransform.from_scale(factors, 0.5 * (factors - 1.0))

    def voxel_size_transform(self) -> AffineTransform:
        if self.voxel_size is None:
            return AffineTransform.identity()
        return AffineTransform.from_scale(normalized_voxel_size(self.voxel_size))

    def level_transform(self, level: int) -> AffineTransform:
        """Full transform from level pixel space to world space."""
        transform = self.voxel_size_transform() @ self.mipmap_transform(level)
        if self.channel_transform is not None:
            transform = self.channel_transform @ transform
        return transform


def _open_levels(reader, channel: int, num_levels: int) -> List[Any]:
    # StorageReadError from the reader aborts the whole build
    return [reader.open_level(channel, level) for level in range(num_levels)]


def build_source(
    reader,
    metadata: ExportMetadata,
    channel: int,
    name: Optional[str] = None,
) -> MultiResolutionSource:
    """
    Build the multi-resolution source of one channel.

    Args:
        reader: Object with ``open_level(channel, level)`` returning (x, y, z)
            arrays, e.g. ZarrExportReader
        metadata: Export metadata providing scales, voxel size and transform
        channel: Channel index
        name: Display name (default: metadata name or ``channel {channel}``)

    Returns:
        MultiResolutionSource with the composed transform chain

    Raises:
        MetadataError: If scales are missing, empty or ragged
        StorageReadError: If any level cannot be opened
    """
    scales = metadata.get_scales(channel)
    resolution = metadata.get_pixel_resolution(channel)
    channel_transform = metadata.get_affine_transform(channel)

    levels = _open_levels(reader, channel, len(scales))

    if name is None:
        name = metadata.get_name(channel) or f"channel {channel}"

    source = MultiResolutionSource(
        levels=levels,
        mipmap_scales=scales,
        voxel_size=resolution.dimensions if resolution is not None else None,
        unit=resolution.unit if resolution is not None else "pixel",
        channel_transform=channel_transform,
        name=name,
    )
    logger.debug(
        "Built source %r with %d levels, voxel size %s",
        name,
        source.num_mipmap_levels,
        source.voxel_size,
    )
    return source


def build_volatile_source(
    reader,
    metadata: ExportMetadata,
    channel: int,
    queue: FetchQueue,
    name: Optional[str] = None,
) -> MultiResolutionSource:
    """
    Build a source whose levels never block on reads.

    Same transforms as ``build_source``; every level is wrapped in a
    ``VolatileArray`` sharing ``queue``.
    """
    source = build_source(reader, metadata, channel, name=name)
    source.levels = [VolatileArray(level, queue) for level in source.levels]
    return source


def build_sources(
    reader,
    metadata: Optional[ExportMetadata] = None,
    channels: Optional[Sequence[int]] = None,
    queue: Optional[FetchQueue] = None,
) -> List[MultiResolutionSource]:
    """
    Build sources for several channels of one export.

    Args:
        reader: Storage reader; its ``metadata`` is used if none is given
        metadata: Export metadata
        channels: Channel indices (default: all channels)
        queue: If given, build volatile sources sharing this queue
    """
    if metadata is None:
        metadata = reader.metadata
    if channels is None:
        channels = range(metadata.num_channels)
    if queue is not None:
        return [build_volatile_source(reader, metadata, c, queue) for c in channels]
    return [build_source(reader, metadata, c) for c in channels]


def source_from_ome_zarr(
    store_or_path,
    channel: int = 0,
    storage_options: Optional[Dict[str, Any]] = None,
    name: Optional[str] = None,
) -> MultiResolutionSource:
    """
    Build a source from an OME-Zarr multiscale image.

    Level arrays come from ``multiscales.images``. Downsampling factors are
    each level's scale relative to level 0, voxel size is level 0's scale,
    and level 0's translation becomes the channel transform (expressed in
    normalised voxel units).

    Args:
        store_or_path: Path or store of the OME-Zarr image
        channel: Index along the ``c`` axis, if present
        storage_options: Storage options for ngff_zarr
        name: Display name (default: the multiscales name)

    Raises:
        MetadataError: If the image has no x/y/z axes
    """
    import ngff_zarr as nz

    multiscales = nz.from_ngff_zarr(store_or_path, storage_options=storage_options)
    images = multiscales.images
    spatial = ["x", "y", "z"]

    base = images[0]
    if any(d not in base.dims for d in spatial):
        raise MetadataError(f"OME-Zarr image needs x, y and z axes, got {base.dims}")

    levels = []
    scales = []
    for image in images:
        selection = []
        kept = []
        for dim in image.dims:
            if dim == "c":
                selection.append(channel)
            elif dim == "t":
                selection.append(0)
            else:
                selection.append(slice(None))
                kept.append(dim)
        data = image.data[tuple(selection)]
        data = data.transpose([kept.index(d) for d in spatial])
        levels.append(data)
        scales.append([image.scale[d] / base.scale[d] for d in spatial])

    voxel_size = tuple(float(base.scale[d]) for d in spatial)
    unit = "pixel"
    for axis in getattr(multiscales.metadata, "axes", None) or []:
        if getattr(axis, "name", None) == "x" and getattr(axis, "unit", None):
            unit = str(axis.unit)
    translation = np.array([base.translation.get(d, 0.0) for d in spatial])
    channel_transform = None
    if np.any(translation != 0):
        channel_transform = AffineTransform.from_scale(
            [1.0, 1.0, 1.0], translation / min(voxel_size)
        )

    return MultiResolutionSource(
        levels=levels,
        mipmap_scales=scales,
        voxel_size=voxel_size,
        unit=unit,
        channel_transform=channel_transform,
        name=name or getattr(multiscales.metadata, "name", None) or f"channel {channel}",
    )
