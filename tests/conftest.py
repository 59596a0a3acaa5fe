import numpy as np
import pytest

from zarrcrop import MultiResolutionSource, write_export


def ramp_volume(shape=(40, 30, 20), offset=1, dtype=np.uint32):
    """Volume whose value encodes its (x, y, z) index, never zero."""
    x, y, z = np.indices(shape)
    return (offset + x + 100 * y + 10000 * z).astype(dtype)


class InMemoryReader:
    """Storage reader backed by numpy arrays, for building sources without zarr."""

    def __init__(self, channels, metadata=None, fail_at=None):
        self.channels = channels
        self.metadata = metadata
        self.fail_at = fail_at
        self.opened = []

    def open_level(self, channel, level):
        from zarrcrop import StorageReadError

        if self.fail_at == (channel, level):
            raise StorageReadError(
                f"cannot open c{channel}/s{level}", channel=channel, level=level
            )
        self.opened.append((channel, level))
        return self.channels[channel][level]


@pytest.fixture
def volume():
    return ramp_volume()


@pytest.fixture
def identity_source():
    """Single-level source with unit voxels and no channel transform."""
    data = np.ones((200, 200, 100), dtype=np.uint8)
    return MultiResolutionSource(
        levels=[data], mipmap_scales=[[1, 1, 1]], voxel_size=(1.0, 1.0, 1.0)
    )


@pytest.fixture
def three_level_source(volume):
    levels = [volume, volume[::2, ::2, ::2], volume[::4, ::4, ::4]]
    return MultiResolutionSource(
        levels=levels, mipmap_scales=[[1, 1, 1], [2, 2, 2], [4, 4, 4]]
    )


@pytest.fixture
def export_path(tmp_path, volume):
    """Two-channel, three-level export on disk."""
    path = str(tmp_path / "export.zarr")
    write_export(
        path,
        [volume, (volume * 2).astype(np.uint32)],
        scales=[[1, 1, 1], [2, 2, 2], [4, 4, 4]],
        pixel_resolution={"dimensions": [0.5, 0.5, 1.0], "unit": "um"},
        name="ramp",
        chunks=16,
    )
    return path
