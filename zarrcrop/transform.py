"""Affine transformations between level pixel space and world space."""

from __future__ import annotations

from typing import Sequence, Union

import numpy as np
from attrs import define

from .exceptions import MetadataError


@define
class AffineTransform:
    """Affine transformation for 3D spatial coordinate mapping.

    Represents a 4x4 homogeneous matrix. Composition follows matrix
    multiplication, so ``a @ b`` applies ``b`` first and then ``a``.

    Attributes:
        matrix: 4x4 affine transformation matrix
    """

    matrix: np.ndarray = None

    @classmethod
    def from_array(cls, matrix: np.ndarray, invert: bool = False) -> "AffineTransform":
        """Create AffineTransform from a numpy array.

        Accepts a 4x4 homogeneous matrix or a 3x4 matrix (the homogeneous
        row is appended), which is how row-major affines are commonly stored
        in array metadata.

        Args:
            matrix: 4x4 or 3x4 array
            invert: Whether to invert the matrix

        Returns:
            AffineTransform instance with the matrix

        Raises:
            ValueError: If matrix is not 4x4 or 3x4
        """
        matrix = np.asarray(matrix, dtype=float)
        if matrix.shape == (3, 4):
            matrix = np.vstack([matrix, [0.0, 0.0, 0.0, 1.0]])
        if matrix.shape != (4, 4):
            raise ValueError(f"Matrix must be 4x4 or 3x4, got shape {matrix.shape}")

        if invert:
            matrix = np.linalg.inv(matrix)
        return cls(matrix=matrix)

    @classmethod
    def from_metadata(cls, values: Sequence[float]) -> "AffineTransform":
        """Create AffineTransform from a flat or nested metadata value.

        Args:
            values: 12 (3x4) or 16 (4x4) row-major numbers, flat or nested

        Raises:
            MetadataError: If the value cannot be read as an affine matrix
        """
        arr = np.asarray(values, dtype=float)
        if arr.ndim == 1 and arr.size in (12, 16):
            arr = arr.reshape(-1, 4)
        try:
            return cls.from_array(arr)
        except ValueError as e:
            raise MetadataError(f"Invalid affine transform metadata: {e}") from e

    @classmethod
    def identity(cls) -> "AffineTransform":
        """Create identity transformation."""
        return cls(matrix=np.eye(4, 4))

    @classmethod
    def from_scale(
        cls,
        scale: Sequence[float],
        translation: Sequence[float] = (0.0, 0.0, 0.0),
    ) -> "AffineTransform":
        """Create a diagonal scaling transform with optional translation.

        Args:
            scale: Per-axis scale factors (x, y, z)
            translation: Per-axis translation (x, y, z)
        """
        matrix = np.eye(4)
        matrix[:3, :3] = np.diag(np.asarray(scale, dtype=float))
        matrix[:3, 3] = np.asarray(translation, dtype=float)
        return cls(matrix=matrix)

    def __array__(self, dtype=None, copy=None) -> np.ndarray:
        if dtype is not None:
            return self.matrix.astype(dtype)
        return self.matrix

    def __getitem__(self, key) -> Union[np.ndarray, float]:
        return self.matrix[key]

    def __matmul__(
        self, other: Union[np.ndarray, "AffineTransform"]
    ) -> Union[np.ndarray, "AffineTransform"]:
        """Perform matrix multiplication with a point, points or transform.

        Args:
            other: The object to multiply with. Supported types:
                - (3,): A single 3D point
                - (3, N): A batch of N 3D points
                - (4, 4): Another affine transformation matrix
                - AffineTransform: Another affine transformation object

        Returns:
            Transformed coordinates or a new AffineTransform

        Raises:
            ValueError: If the shape of `other` is unsupported
            TypeError: If `other` is not an np.ndarray or AffineTransform
        """
        if isinstance(other, AffineTransform):
            return AffineTransform.from_array(self.matrix @ other.matrix)
        if isinstance(other, (list, tuple)):
            other = np.asarray(other, dtype=float)
        if isinstance(other, np.ndarray):
            if other.shape == (3,):
                result = self.matrix @ np.append(other, 1.0)
                return result[:3] / result[3]
            elif other.ndim == 2 and other.shape[0] == 3:
                homog_points = np.vstack([other, np.ones((1, other.shape[1]))])
                transformed = self.matrix @ homog_points
                return transformed[:3] / transformed[3]
            elif other.shape == (4, 4):
                return AffineTransform.from_array(self.matrix @ other)
            else:
                raise ValueError(f"Unsupported shape for multiplication: {other.shape}")
        raise TypeError(f"Unsupported type for multiplication: {type(other)}")

    def apply_transform(self, vecs: np.ndarray) -> np.ndarray:
        """Map coordinates forward (pixel to world for a level transform)."""
        return self @ vecs

    def apply_inverse(self, vecs: np.ndarray) -> np.ndarray:
        """Map coordinates backward (world to pixel for a level transform)."""
        return self.invert() @ vecs

    def invert(self) -> "AffineTransform":
        """Return the inverse of the matrix transformation.

        Raises:
            np.linalg.LinAlgError: If matrix is singular and cannot be inverted
        """
        return AffineTransform.from_array(np.linalg.inv(self.matrix))

    def concatenate(self, other: "AffineTransform") -> "AffineTransform":
        """Return ``self @ other``: apply ``other`` first, then ``self``."""
        return self @ other

    def pre_concatenate(self, other: "AffineTransform") -> "AffineTransform":
        """Return ``other @ self``: apply ``self`` first, then ``other``."""
        return other @ self

    def get_scale(self) -> np.ndarray:
        """Diagonal of the linear part, i.e. per-axis pixel size."""
        return np.diag(self.matrix[:3, :3]).copy()

    def get_translation(self) -> np.ndarray:
        return self.matrix[:3, 3].copy()

    def is_scaling(self, atol: float = 1e-12) -> bool:
        """True if the linear part is diagonal (no rotation or shear)."""
        linear = self.matrix[:3, :3]
        return bool(np.allclose(linear - np.diag(np.diag(linear)), 0.0, atol=atol))
