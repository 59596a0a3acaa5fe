"""Tests for export metadata parsing."""

import numpy as np
import pytest
from numpy.testing import assert_array_almost_equal

from zarrcrop import ExportMetadata, MetadataError, PixelResolution
from zarrcrop.metadata import scale_level_dataset_path, validate_scales


def test_scale_level_dataset_path():
    assert scale_level_dataset_path(0, 0) == "c0/s0"
    assert ExportMetadata.scale_level_dataset_path(2, 3) == "c2/s3"


def test_validate_scales_returns_array():
    scales = validate_scales([[1, 1, 1], [2, 2, 1]])
    assert scales.shape == (2, 3)
    assert scales.dtype == float


@pytest.mark.parametrize(
    "scales",
    [
        None,
        [],
        [[1, 1, 1], [2, 2]],
        [[1, 1, 1], [0, 2, 2]],
        [1, 1, 1],
        [[1, 1, 1], 2],
        [["a", 1, 1]],
        "s0",
    ],
)
def test_validate_scales_rejects_bad_input(scales):
    with pytest.raises(MetadataError):
        validate_scales(scales)


def test_validate_scales_checks_axis_count():
    with pytest.raises(MetadataError, match="expected"):
        validate_scales([[1, 1]], ndim=3)


def test_channel_attributes_override_root():
    metadata = ExportMetadata(
        root_attrs={
            "scales": [[1, 1, 1]],
            "pixelResolution": {"dimensions": [1, 1, 2], "unit": "um"},
            "name": "root",
        },
        channel_attrs={1: {"scales": [[1, 1, 1], [2, 2, 2]], "name": "second"}},
        num_channels=2,
    )
    assert metadata.get_scales(0) == [[1.0, 1.0, 1.0]]
    assert metadata.get_scales(1) == [[1.0, 1.0, 1.0], [2.0, 2.0, 2.0]]
    assert metadata.get_name() == "root"
    assert metadata.get_name(1) == "second"
    assert metadata.get_pixel_resolution(1).dimensions == (1.0, 1.0, 2.0)


def test_missing_optional_metadata():
    metadata = ExportMetadata(root_attrs={"scales": [[1, 1, 1]]}, num_channels=1)
    assert metadata.get_pixel_resolution(0) is None
    assert metadata.get_affine_transform(0) is None


def test_missing_scales_raises():
    metadata = ExportMetadata(root_attrs={}, num_channels=1)
    with pytest.raises(MetadataError):
        metadata.get_scales(0)


def test_affine_transform_from_metadata():
    metadata = ExportMetadata(
        root_attrs={
            "scales": [[1, 1, 1]],
            "affineTransform": [[1, 0, 0, 10], [0, 1, 0, 20], [0, 0, 1, 30]],
        },
        num_channels=1,
    )
    transform = metadata.get_affine_transform(0)
    assert_array_almost_equal(transform.get_translation(), [10, 20, 30])


def test_pixel_resolution_parsing():
    res = PixelResolution.from_metadata({"dimensions": [0.5, 0.5, 2], "unit": "um"})
    assert res.dimensions == (0.5, 0.5, 2.0)
    assert res.unit == "um"
    assert res.to_metadata() == {"dimensions": [0.5, 0.5, 2.0], "unit": "um"}

    bare = PixelResolution.from_metadata([1, 2, 3])
    assert bare.unit == "pixel"


@pytest.mark.parametrize("value", [{"unit": "um"}, [], [1.0, -1.0, 1.0]])
def test_pixel_resolution_rejects_bad_input(value):
    with pytest.raises(MetadataError):
        PixelResolution.from_metadata(value)


def test_flat_scales_attribute_is_a_metadata_error():
    metadata = ExportMetadata(root_attrs={"scales": [1, 1, 1]})
    with pytest.raises(MetadataError, match="per-axis"):
        metadata.get_scales(0)
