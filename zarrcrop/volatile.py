"""Non-blocking pixel access for interactive viewers.

A ``VolatileArray`` wraps a lazily loaded level array. Reads never wait for
storage: a block that has not been fetched yet is returned as a placeholder
(the dtype's zero) together with ``valid=False``, and a fetch is queued on a
shared ``FetchQueue``. Once a block has been fetched it is served from memory
and never reverts to the placeholder.
"""

from __future__ import annotations

import threading
from concurrent.futures import Future, ThreadPoolExecutor
from concurrent.futures import TimeoutError as FuturesTimeoutError
from typing import Dict, Optional, Sequence, Tuple

import numpy as np

from .exceptions import StorageReadError
from .logging import get_logger

logger = get_logger(__name__)


class FetchQueue:
    """Thread pool shared by all volatile arrays of a viewer.

    Args:
        num_fetcher_threads: Number of background fetcher threads
    """

    def __init__(self, num_fetcher_threads: int = 1):
        self.num_fetcher_threads = num_fetcher_threads
        self._executor = ThreadPoolExecutor(
            max_workers=num_fetcher_threads, thread_name_prefix="zarrcrop-fetch"
        )

    def submit(self, fn, *args) -> Future:
        return self._executor.submit(fn, *args)

    def shutdown(self, wait: bool = True) -> None:
        self._executor.shutdown(wait=wait)

    def __enter__(self) -> "FetchQueue":
        return self

    def __exit__(self, *exc) -> None:
        self.shutdown()


class VolatileArray:
    """
    Block-cached, placeholder-returning view of a level array.

    Args:
        data: Array-like indexed (x, y, z); dask arrays are computed block
            by block on the fetch queue
        queue: Shared fetch queue
        block_shape: Block size per axis (default: the dask chunk size, or
            the full shape for non-dask arrays)
        placeholder: Value reported for blocks that are not loaded yet
    """

    def __init__(
        self,
        data,
        queue: FetchQueue,
        block_shape: Optional[Sequence[int]] = None,
        placeholder=0,
    ):
        self.data = data
        self.queue = queue
        if block_shape is None:
            block_shape = getattr(data, "chunksize", data.shape)
        self.block_shape = tuple(int(b) for b in block_shape)
        self.placeholder = np.asarray(placeholder, dtype=data.dtype)
        self._blocks: Dict[Tuple[int, ...], np.ndarray] = {}
        self._pending: Dict[Tuple[int, ...], Future] = {}
        self._lock = threading.Lock()

    @property
    def shape(self) -> Tuple[int, ...]:
        return tuple(self.data.shape)

    @property
    def dtype(self):
        return self.data.dtype

    @property
    def ndim(self) -> int:
        return len(self.shape)

    @property
    def chunksize(self) -> Tuple[int, ...]:
        return self.block_shape

    def block_index(self, position: Sequence[int]) -> Tuple[int, ...]:
        """Index of the block containing an in-bounds pixel position."""
        for p, s in zip(position, self.shape):
            if p < 0 or p >= s:
                raise IndexError(f"Position {tuple(position)} outside {self.shape}")
        return tuple(int(p) // b for p, b in zip(position, self.block_shape))

    def _block_slices(self, index: Tuple[int, ...]) -> Tuple[slice, ...]:
        return tuple(
            slice(i * b, min((i + 1) * b, s))
            for i, b, s in zip(index, self.block_shape, self.shape)
        )

    def _load(self, index: Tuple[int, ...]) -> np.ndarray:
        block = np.asarray(self.data[self._block_slices(index)])
        with self._lock:
            self._blocks[index] = block
            self._pending.pop(index, None)
        logger.debug("Fetched block %s", index)
        return block

    def _request(self, index: Tuple[int, ...]) -> Future:
        # caller holds the lock
        future = self._pending.get(index)
        if future is None:
            future = self.queue.submit(self._load, index)
            self._pending[index] = future
        return future

    def is_resolved(self, index: Tuple[int, ...]) -> bool:
        with self._lock:
            return index in self._blocks

    def get_block(self, index: Tuple[int, ...]) -> Tuple[np.ndarray, bool]:
        """
        Return a block without blocking.

        Returns:
            tuple: (block data or placeholder block, valid flag)

        Raises:
            StorageReadError: If a previous fetch of this block failed
        """
        with self._lock:
            block = self._blocks.get(index)
            if block is not None:
                return block, True
            future = self._request(index)

        if future.done() and future.exception() is not None:
            with self._lock:
                self._pending.pop(index, None)
            raise StorageReadError(
                f"Failed to fetch block {index}: {future.exception()}"
            ) from future.exception()

        shape = tuple(s.stop - s.start for s in self._block_slices(index))
        return np.full(shape, self.placeholder, dtype=self.dtype), False

    def get(self, position: Sequence[int]) -> Tuple[np.generic, bool]:
        """Return ``(value, valid)`` for a single pixel without blocking."""
        index = self.block_index(position)
        block, valid = self.get_block(index)
        local = tuple(int(p) - i * b for p, i, b in zip(position, index, self.block_shape))
        return block[local], valid

    def wait(self, index: Tuple[int, ...], timeout: Optional[float] = None) -> np.ndarray:
        """Block until a block is fetched and return it."""
        with self._lock:
            block = self._blocks.get(index)
            if block is not None:
                return block
            future = self._request(index)
        try:
            return future.result(timeout=timeout)
        except FuturesTimeoutError:
            raise
        except Exception as e:
            with self._lock:
                self._pending.pop(index, None)
            raise StorageReadError(f"Failed to fetch block {index}: {e}") from e

    def __getitem__(self, key):
        # eager reads (e.g. crop extraction) bypass the placeholder path
        return self.data[key]
