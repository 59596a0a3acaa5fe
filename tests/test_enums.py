"""Tests for enumeration classes."""

from zarrcrop.enums import CropState, ExportFormat


def test_crop_state_enum():
    """Test CropState enum values."""
    assert CropState.AWAITING_CLICK != CropState.DONE
    assert CropState.ABORTED != CropState.DONE
    assert len(CropState) == 7


def test_export_format_enum():
    assert ExportFormat.NIFTI != ExportFormat.IMAGEJ_TIFF
    assert len(ExportFormat) == 2


def test_enum_string_representation():
    assert str(CropState.VALIDATING) == "CropState.VALIDATING"
    assert str(ExportFormat.NIFTI) == "ExportFormat.NIFTI"
