"""Enumeration classes for zarrcrop type definitions."""

from enum import Enum, auto


class CropState(Enum):
    """States a single crop operation passes through.

    Attributes:
        AWAITING_CLICK: Waiting for a click in the viewer
        PARAMETERS_COLLECTED: Center, size and level are known
        VALIDATING: Checking the level against every channel
        EXTRACTING: Building per-channel views
        ASSEMBLING: Stacking / labelling the outputs
        DONE: Result produced
        ABORTED: Cancelled by the user or rejected during validation
    """

    AWAITING_CLICK = auto()
    PARAMETERS_COLLECTED = auto()
    VALIDATING = auto()
    EXTRACTING = auto()
    ASSEMBLING = auto()
    DONE = auto()
    ABORTED = auto()


class ExportFormat(Enum):
    """Supported crop export formats.

    Attributes:
        NIFTI: NIfTI-1 (.nii / .nii.gz), calibration stored in the affine
        IMAGEJ_TIFF: ImageJ hyperstack TIFF, calibration stored as resolution/spacing
    """

    NIFTI = auto()
    IMAGEJ_TIFF = auto()
