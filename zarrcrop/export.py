"""Write crop results to NIfTI or ImageJ hyperstack TIFF files.

NIfTI files store the calibration in their affine (diagonal pixel size,
translation = origin). ImageJ TIFFs store pixel size as resolution and
spacing; single-channel depth stacks are relabelled so that ImageJ reads
them as z-slices rather than channels.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import List, Optional, Tuple, Union

import nibabel as nib
import numpy as np

from .core import (
    Calibration,
    ChannelCrop,
    CropResult,
    depth_stack_layout,
    wrapped_hyperstack_dims,
)
from .enums import ExportFormat
from .logging import get_logger

logger = get_logger(__name__)


def detect_format(path: Union[str, Path]) -> ExportFormat:
    """Pick the export format from a file name.

    Raises:
        ValueError: If the extension is neither NIfTI nor TIFF
    """
    path = str(path)
    if path.endswith(".nii") or path.endswith(".nii.gz"):
        return ExportFormat.NIFTI
    if path.endswith(".tif") or path.endswith(".tiff"):
        return ExportFormat.IMAGEJ_TIFF
    raise ValueError(
        f"Cannot infer export format from '{path}'; use .nii, .nii.gz, .tif or .tiff"
    )


def calibration_affine(calibration: Calibration) -> np.ndarray:
    """4x4 NIfTI affine of a calibration."""
    affine = np.eye(4)
    affine[:3, :3] = np.diag(calibration.pixel_size)
    affine[:3, 3] = calibration.origin
    return affine


def channel_to_nifti(crop: ChannelCrop) -> nib.Nifti1Image:
    """Compute a channel crop and wrap it as an (x, y, z) NIfTI image."""
    return nib.Nifti1Image(crop.compute(), calibration_affine(crop.calibration))


def combined_to_nifti(result: CropResult) -> nib.Nifti1Image:
    """Wrap a combined (x, y, c, z) crop as an (x, y, z, c) NIfTI image."""
    data = np.asarray(result.combined.compute()).transpose(0, 1, 3, 2)
    return nib.Nifti1Image(data, calibration_affine(result.combined_calibration))


def _imagej_dtype(data: np.ndarray) -> np.ndarray:
    # ImageJ hyperstacks hold 8/16-bit unsigned or 32-bit float pixels
    if data.dtype in (np.uint8, np.uint16, np.float32):
        return data
    if data.dtype.kind in "iu" and data.dtype.itemsize >= 4:
        logger.warning(
            "Casting %s pixels to float32 for ImageJ; values above 2**24 lose precision",
            data.dtype,
        )
    elif data.dtype == np.float64:
        logger.warning("Casting float64 pixels to float32 for ImageJ")
    return data.astype(np.float32)


def _imagej_metadata(calibration: Calibration, axes: str, title: str) -> dict:
    return {
        "axes": axes,
        "spacing": calibration.pixel_size[2],
        "unit": "pixel",
        "Info": f"{title}\norigin={list(calibration.origin)}",
    }


def _hyperstack_axes(layout: Tuple[int, int, int]) -> Tuple[str, List[int]]:
    # ImageJ hyperstacks are ordered TZCYX; axes of size one are left out
    n_channels, n_slices, n_frames = layout
    named = [("T", n_frames), ("Z", n_slices), ("C", n_channels)]
    axes = "".join(name for name, count in named if count > 1)
    return axes + "YX", [count for _, count in named if count > 1]


def write_channel_tiff(crop: ChannelCrop, path: Union[str, Path]) -> str:
    """
    Write a single-channel crop as an ImageJ TIFF.

    Depth stacks are relabelled with ``depth_stack_layout`` so that ImageJ
    opens them as z-slices of one channel. A single slice is written as YX.

    Raises:
        AmbiguousLayoutError: If the block cannot be read as a depth stack
    """
    import tifffile

    data = crop.compute()
    depth = data.shape[2]
    if depth > 1:
        layout = depth_stack_layout(*wrapped_hyperstack_dims(data.shape), depth=depth)
        logger.debug(
            "Relabelled %s as channels=%d slices=%d frames=%d", crop.label, *layout
        )
        axes, counts = _hyperstack_axes(layout)
        pixels = data.transpose(2, 1, 0).reshape(counts + list(data.shape[1::-1]))
    else:
        pixels, axes = data[:, :, 0].transpose(), "YX"

    px, py = crop.calibration.pixel_size[:2]
    tifffile.imwrite(
        str(path),
        _imagej_dtype(np.ascontiguousarray(pixels)),
        imagej=True,
        resolution=(1.0 / px, 1.0 / py),
        metadata=_imagej_metadata(crop.calibration, axes, crop.label),
    )
    return str(path)


def write_combined_tiff(result: CropResult, path: Union[str, Path]) -> str:
    """Write a combined (x, y, c, z) crop as an ImageJ ZCYX hyperstack."""
    import tifffile

    pixels = np.asarray(result.combined.compute()).transpose(3, 2, 1, 0)
    calibration = result.combined_calibration
    px, py = calibration.pixel_size[:2]
    tifffile.imwrite(
        str(path),
        _imagej_dtype(np.ascontiguousarray(pixels)),
        imagej=True,
        resolution=(1.0 / px, 1.0 / py),
        metadata=_imagej_metadata(calibration, "ZCYX", result.label),
    )
    return str(path)


def channel_output_path(path: Union[str, Path], channel: int) -> str:
    """Insert ``_c{channel}`` before the extension(s) of ``path``."""
    path = str(path)
    for ext in (".nii.gz", ".nii", ".tiff", ".tif"):
        if path.endswith(ext):
            return f"{path[: -len(ext)]}_c{channel}{ext}"
    root, ext = os.path.splitext(path)
    return f"{root}_c{channel}{ext}"


def export_result(
    result: CropResult,
    path: Union[str, Path],
    fmt: Optional[ExportFormat] = None,
) -> List[str]:
    """
    Write a crop result to disk.

    Combined results produce one file. Separate channels produce one file per
    channel, named with a ``_c{channel}`` suffix.

    Args:
        result: Crop to write
        path: Output file name
        fmt: Export format (default: inferred from the extension)

    Returns:
        Paths of the written files
    """
    if fmt is None:
        fmt = detect_format(path)

    output_dir = os.path.dirname(str(path))
    if output_dir and not os.path.exists(output_dir):
        os.makedirs(output_dir)

    written = []
    if result.is_combined:
        if fmt is ExportFormat.NIFTI:
            nib.save(combined_to_nifti(result), str(path))
            written.append(str(path))
        else:
            written.append(write_combined_tiff(result, path))
    else:
        for crop in result.channels:
            out = channel_output_path(path, crop.channel)
            if fmt is ExportFormat.NIFTI:
                nib.save(channel_to_nifti(crop), out)
                written.append(out)
            else:
                written.append(write_channel_tiff(crop, out))

    logger.info("Wrote %s", ", ".join(written))
    return written
