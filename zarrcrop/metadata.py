"""Per-channel export metadata for multi-resolution chunked stores.

A store written in the export layout looks like::

    root/                 attrs: name, scales, pixelResolution, affineTransform
      c0/                 attrs: optional per-channel overrides
        s0                finest level, stored (z, y, x)
        s1
        ...
      c1/
        ...

Scale factors, voxel sizes and affine transforms are expressed in (x, y, z)
order. Attributes on a channel group take precedence over root attributes.
"""

from __future__ import annotations

from typing import Any, Dict, List, Mapping, Optional, Tuple

import numpy as np
from attrs import define, field

from .exceptions import MetadataError
from .transform import AffineTransform

SCALES_KEY = "scales"
PIXEL_RESOLUTION_KEY = "pixelResolution"
AFFINE_TRANSFORM_KEY = "affineTransform"
NAME_KEY = "name"


def scale_level_dataset_path(channel: int, level: int) -> str:
    """Path of the array holding ``level`` of ``channel`` inside the store."""
    return f"c{channel}/s{level}"


def channel_group_path(channel: int) -> str:
    return f"c{channel}"


def validate_scales(scales: Any, ndim: Optional[int] = None) -> np.ndarray:
    """
    Check a per-level list of downsampling factors.

    Args:
        scales: Nested sequence ``scales[level][axis]``
        ndim: Expected number of axes (default: inferred from level 0)

    Returns:
        Float array of shape (num_levels, ndim)

    Raises:
        MetadataError: If the list is missing, empty, ragged, or has
            non-positive factors
    """
    if scales is None:
        raise MetadataError("No scales found in metadata")
    if not isinstance(scales, (list, tuple, np.ndarray)):
        raise MetadataError(
            f"Scales must be a list of per-level factors, got {scales!r}"
        )
    levels = list(scales)
    if len(levels) == 0:
        raise MetadataError("Scales list is empty")
    for level in levels:
        if not isinstance(level, (list, tuple, np.ndarray)):
            raise MetadataError(
                f"Each scale level must be a list of per-axis factors, got {level!r}"
            )

    axis_counts = {len(level) for level in levels}
    if len(axis_counts) != 1:
        raise MetadataError(
            f"Scales are ragged: levels have axis counts {sorted(axis_counts)}"
        )
    (count,) = axis_counts
    if ndim is not None and count != ndim:
        raise MetadataError(
            f"Scales have {count} axes but {ndim} were expected"
        )

    try:
        arr = np.asarray(levels, dtype=float)
    except (TypeError, ValueError) as e:
        raise MetadataError(f"Scale factors must be numbers, got {levels}") from e
    if np.any(arr <= 0):
        raise MetadataError(f"Scale factors must be positive, got {levels}")
    return arr


@define
class PixelResolution:
    """Physical voxel size at full resolution.

    Attributes:
        dimensions: Size of one voxel per axis (x, y, z)
        unit: Physical unit of ``dimensions``
    """

    dimensions: Tuple[float, ...]
    unit: str = "pixel"

    @classmethod
    def from_metadata(cls, value: Any) -> "PixelResolution":
        """Parse ``{"dimensions": [...], "unit": "um"}`` or a bare list."""
        if isinstance(value, Mapping):
            dims = value.get("dimensions")
            unit = value.get("unit") or "pixel"
        else:
            dims = value
            unit = "pixel"
        if dims is None or len(dims) == 0:
            raise MetadataError(f"Invalid pixel resolution metadata: {value!r}")
        dims = tuple(float(d) for d in dims)
        if any(d <= 0 for d in dims):
            raise MetadataError(f"Voxel sizes must be positive, got {dims}")
        return cls(dimensions=dims, unit=str(unit))

    def to_metadata(self) -> Dict[str, Any]:
        return {"dimensions": list(self.dimensions), "unit": self.unit}


@define
class ExportMetadata:
    """
    Metadata of a multi-channel, multi-resolution export.

    Attributes:
        root_attrs: Attributes of the root group (defaults for all channels)
        channel_attrs: Attributes of each ``c{channel}`` group, by channel
        num_channels: Number of ``c{channel}`` groups present
    """

    root_attrs: Dict[str, Any] = field(factory=dict)
    channel_attrs: Dict[int, Dict[str, Any]] = field(factory=dict)
    num_channels: int = 0

    @classmethod
    def from_group(cls, group) -> "ExportMetadata":
        """
        Read metadata from an open zarr group in the export layout.

        Args:
            group: zarr.Group opened on the store root

        Returns:
            ExportMetadata describing all ``c{channel}`` groups found
        """
        root_attrs = dict(group.attrs)
        channel_attrs = {}
        channel = 0
        while channel_group_path(channel) in group:
            channel_attrs[channel] = dict(group[channel_group_path(channel)].attrs)
            channel += 1
        return cls(
            root_attrs=root_attrs, channel_attrs=channel_attrs, num_channels=channel
        )

    def _get(self, channel: int, key: str) -> Any:
        attrs = self.channel_attrs.get(channel, {})
        if key in attrs:
            return attrs[key]
        return self.root_attrs.get(key)

    def get_name(self, channel: Optional[int] = None) -> Optional[str]:
        if channel is None:
            return self.root_attrs.get(NAME_KEY)
        return self._get(channel, NAME_KEY)

    def get_scales(self, channel: int) -> List[List[float]]:
        """
        Per-level downsampling factors of a channel.

        Raises:
            MetadataError: If scales are missing, empty or ragged
        """
        return validate_scales(self._get(channel, SCALES_KEY)).tolist()

    def get_pixel_resolution(self, channel: int) -> Optional[PixelResolution]:
        """Voxel size of a channel, or None if the export does not declare one."""
        value = self._get(channel, PIXEL_RESOLUTION_KEY)
        if value is None:
            return None
        return PixelResolution.from_metadata(value)

    def get_affine_transform(self, channel: int) -> Optional[AffineTransform]:
        """Channel-specific affine transform, or None if not declared."""
        value = self._get(channel, AFFINE_TRANSFORM_KEY)
        if value is None:
            return None
        return AffineTransform.from_metadata(value)

    @staticmethod
    def scale_level_dataset_path(channel: int, level: int) -> str:
        return scale_level_dataset_path(channel, level)
