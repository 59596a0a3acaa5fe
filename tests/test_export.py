"""Tests for writing crop results to disk."""

import logging

import nibabel as nib
import numpy as np
import pytest
import tifffile
from numpy.testing import assert_array_almost_equal

from zarrcrop import (
    AmbiguousLayoutError,
    CropController,
    ExportFormat,
    MultiResolutionSource,
    export_result,
)
from zarrcrop.export import (
    _hyperstack_axes,
    calibration_affine,
    channel_output_path,
    detect_format,
)


@pytest.fixture
def two_channel_controller(volume):
    sources = [
        MultiResolutionSource(
            levels=[volume], mipmap_scales=[[1, 1, 1]], voxel_size=(1.0, 1.0, 2.0)
        ),
        MultiResolutionSource(
            levels=[volume * 2], mipmap_scales=[[1, 1, 1]], voxel_size=(1.0, 1.0, 2.0)
        ),
    ]
    return CropController(sources)


@pytest.mark.parametrize(
    "path,fmt",
    [
        ("a.nii", ExportFormat.NIFTI),
        ("a.nii.gz", ExportFormat.NIFTI),
        ("dir/a.tif", ExportFormat.IMAGEJ_TIFF),
        ("a.tiff", ExportFormat.IMAGEJ_TIFF),
    ],
)
def test_detect_format(path, fmt):
    assert detect_format(path) is fmt


def test_detect_format_unknown():
    with pytest.raises(ValueError):
        detect_format("crop.png")


def test_channel_output_path():
    assert channel_output_path("out/crop.nii.gz", 1) == "out/crop_c1.nii.gz"
    assert channel_output_path("crop.tif", 0) == "crop_c0.tif"


def test_separate_nifti_channels(two_channel_controller, volume, tmp_path):
    result = two_channel_controller.crop_at(
        (10, 10, 10), (6, 4, 2), combine_channels=False
    )
    written = export_result(result, tmp_path / "crop.nii.gz")
    assert written == [
        str(tmp_path / "crop_c0.nii.gz"),
        str(tmp_path / "crop_c1.nii.gz"),
    ]

    img = nib.load(written[1])
    crop = result.channels[1]
    x, y, z = crop.box.min
    np.testing.assert_array_equal(
        np.asarray(img.dataobj), volume[x : x + 6, y : y + 4, z : z + 2] * 2
    )
    assert_array_almost_equal(img.affine, calibration_affine(crop.calibration))
    assert_array_almost_equal(img.affine[:3, 3], crop.calibration.origin)


def test_combined_nifti_is_xyzc(two_channel_controller, tmp_path):
    result = two_channel_controller.crop_at((10, 10, 10), (6, 4, 3))
    (path,) = export_result(result, tmp_path / "crop.nii")
    img = nib.load(path)
    assert img.shape == (6, 4, 3, 2)


def test_combined_tiff_is_zcyx(two_channel_controller, tmp_path):
    result = two_channel_controller.crop_at((10, 10, 10), (6, 4, 3))
    (path,) = export_result(result, tmp_path / "sub" / "crop.tif")
    with tifffile.TiffFile(path) as tif:
        assert tif.series[0].axes == "ZCYX"
        data = tif.asarray()
    assert data.shape == (3, 2, 4, 6)
    expected = result.combined.compute()
    np.testing.assert_array_equal(data[1, 0], expected[:, :, 0, 1].T)


def test_single_channel_tiff_is_depth_stack(two_channel_controller, tmp_path):
    result = two_channel_controller.crop_at(
        (10, 10, 10), (6, 4, 5), combine_channels=False
    )
    written = export_result(result, tmp_path / "crop.tif")
    with tifffile.TiffFile(written[0]) as tif:
        assert tif.series[0].axes == "ZYX"
        assert tif.imagej_metadata["slices"] == 5
        assert tif.imagej_metadata.get("channels", 1) == 1
        assert tif.asarray().shape == (5, 4, 6)
        expected = result.channels[0].compute()
        np.testing.assert_array_equal(tif.asarray()[2], expected[:, :, 2].T)


def test_hyperstack_axes_follow_layout():
    assert _hyperstack_axes((1, 5, 1)) == ("ZYX", [5])
    assert _hyperstack_axes((2, 5, 1)) == ("ZCYX", [5, 2])


def test_ambiguous_layout_stops_tiff_export(
    two_channel_controller, tmp_path, monkeypatch
):
    import zarrcrop.export

    monkeypatch.setattr(
        zarrcrop.export, "wrapped_hyperstack_dims", lambda shape: (shape[2], 2, 1)
    )
    result = two_channel_controller.crop_at(
        (10, 10, 10), (6, 4, 5), combine_channels=False
    )
    with pytest.raises(AmbiguousLayoutError):
        export_result(result, tmp_path / "crop.tif")


def test_wide_integers_warn_when_cast_for_imagej(
    two_channel_controller, tmp_path, caplog
):
    result = two_channel_controller.crop_at((10, 10, 10), (6, 4, 5))
    with caplog.at_level(logging.WARNING, logger="zarrcrop"):
        export_result(result, tmp_path / "crop.tif")
    assert "Casting uint32 pixels to float32" in caplog.text


def test_single_slice_tiff(two_channel_controller, tmp_path):
    result = two_channel_controller.crop_at(
        (10, 10, 10), (6, 4, 1), combine_channels=False
    )
    written = export_result(result, tmp_path / "crop.tif")
    assert tifffile.imread(written[0]).shape == (4, 6)
