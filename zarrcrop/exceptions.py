"""Exception types raised by zarrcrop."""

from __future__ import annotations

from typing import Optional, Tuple


class MetadataError(ValueError):
    """Raised when scale, voxel size or transform metadata is missing or malformed."""

    pass


class StorageReadError(OSError):
    """Raised when a resolution level cannot be opened or read from storage.

    Attributes:
        channel: Channel index of the failing level (None if unknown)
        level: Resolution level that failed (None if unknown)
    """

    def __init__(
        self,
        message: str,
        channel: Optional[int] = None,
        level: Optional[int] = None,
    ):
        super().__init__(message)
        self.channel = channel
        self.level = level


class LevelRangeError(IndexError):
    """Raised when a requested resolution level does not exist for a channel.

    Attributes:
        channel: Index of the first channel that does not provide the level
        level: The requested level
        valid_range: Inclusive ``(0, num_levels - 1)`` range for that channel
    """

    def __init__(self, channel: int, level: int, valid_range: Tuple[int, int]):
        self.channel = channel
        self.level = level
        self.valid_range = valid_range
        super().__init__(
            f"Specified incorrect scale level {level} for channel {channel}. "
            f"Valid range is [{valid_range[0]}, {valid_range[1]}]"
        )


class AmbiguousLayoutError(ValueError):
    """Raised when a block cannot be unambiguously labelled as a depth stack."""

    pass


class CropCancelledError(RuntimeError):
    """Raised when a crop is cancelled between per-channel extractions."""

    pass
