from .core import (
    Calibration,
    ChannelCrop,
    CropBox,
    CropController,
    CropDefaults,
    CropParameters,
    CropRequest,
    CropResult,
    depth_stack_layout,
)
from .enums import CropState, ExportFormat
from .exceptions import (
    AmbiguousLayoutError,
    CropCancelledError,
    LevelRangeError,
    MetadataError,
    StorageReadError,
)
from .export import export_result
from .io import ZarrExportReader, write_export
from .metadata import ExportMetadata, PixelResolution
from .source import (
    MultiResolutionSource,
    build_source,
    build_sources,
    build_volatile_source,
    normalized_voxel_size,
    source_from_ome_zarr,
)
from .transform import AffineTransform
from .volatile import FetchQueue, VolatileArray

__all__ = [
    "AffineTransform",
    "AmbiguousLayoutError",
    "Calibration",
    "ChannelCrop",
    "CropBox",
    "CropCancelledError",
    "CropController",
    "CropDefaults",
    "CropParameters",
    "CropRequest",
    "CropResult",
    "CropState",
    "ExportFormat",
    "ExportMetadata",
    "FetchQueue",
    "LevelRangeError",
    "MetadataError",
    "MultiResolutionSource",
    "PixelResolution",
    "StorageReadError",
    "VolatileArray",
    "ZarrExportReader",
    "build_source",
    "build_sources",
    "build_volatile_source",
    "depth_stack_layout",
    "export_result",
    "normalized_voxel_size",
    "source_from_ome_zarr",
    "write_export",
]
