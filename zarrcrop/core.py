"""Crop engine: turn a click, a size and a resolution level into pixel crops.

The module includes:
- ``CropController``: resolves viewer clicks and runs crop operations
- Records for the request (``CropRequest``, ``CropParameters``), its result
  (``CropBox``, ``Calibration``, ``ChannelCrop``, ``CropResult``) and the
  last-used settings (``CropDefaults``)
- ``depth_stack_layout``: relabel a wrapped 3D block as a depth stack

Coordinates are (x, y, z) throughout. A crop is computed per channel by
mapping the world-space center through the inverse of the channel's level
transform, centering a box of the requested pixel size there, and reading
that box from a zero-extended view of the level array.
"""

from __future__ import annotations

import math
import threading
from concurrent.futures import ThreadPoolExecutor
from typing import Callable, Optional, Sequence, Tuple

import dask.array as da
import numpy as np
from attrs import define, evolve, field

from .enums import CropState
from .exceptions import AmbiguousLayoutError, CropCancelledError, LevelRangeError
from .logging import get_logger
from .source import MultiResolutionSource
from .transform import AffineTransform
from .views import stack_channels, swap_channel_and_depth, zero_extended_offset_view

logger = get_logger(__name__)

Point3D = Tuple[float, float, float]
DisplayToWorld = Callable[[int, int], Sequence[float]]


def round_half_up(value: float) -> int:
    """Round to the nearest integer, halves towards positive infinity."""
    return int(math.floor(value + 0.5))


def format_point(point: Sequence[float]) -> str:
    """Render a point as ``[x, y, z]`` with integer coordinates."""
    return "[" + ", ".join(str(round_half_up(v)) for v in point) + "]"


def _positive_size(instance, attribute, value):
    if len(value) != 3 or any(int(v) != v or v <= 0 for v in value):
        raise ValueError(f"{attribute.name} must be three positive integers, got {value}")


def _to_int_tuple(value) -> Tuple[int, ...]:
    return tuple(int(v) for v in value)


def _to_float_tuple(value) -> Tuple[float, ...]:
    return tuple(float(v) for v in value)


@define
class CropBox:
    """Axis-aligned pixel box.

    Attributes:
        min: First pixel per axis
        size: Extent per axis
    """

    min: Tuple[int, ...] = field(converter=_to_int_tuple)
    size: Tuple[int, ...] = field(converter=_to_int_tuple)

    @property
    def max(self) -> Tuple[int, ...]:
        """Exclusive upper corner."""
        return tuple(m + s for m, s in zip(self.min, self.size))

    @classmethod
    def centered_at(cls, center: Sequence[float], size: Sequence[int]) -> "CropBox":
        """Box of ``size`` whose min is ``round(center - size / 2)`` per axis."""
        box_min = [round_half_up(c - 0.5 * s) for c, s in zip(center, size)]
        return cls(min=box_min, size=size)


@define
class Calibration:
    """Physical pixel size and origin of an extracted crop.

    Attributes:
        pixel_size: Diagonal of the level transform per axis
        origin: ``pixel_size[d] * min[d]`` per axis
    """

    pixel_size: Tuple[float, ...] = field(converter=_to_float_tuple)
    origin: Tuple[float, ...] = field(converter=_to_float_tuple)

    @classmethod
    def from_transform(
        cls, transform: AffineTransform, box_min: Sequence[int]
    ) -> "Calibration":
        """
        Derive calibration from a level transform.

        Only the diagonal of the transform is used, so the result is exact
        for pure scaling transforms only.
        """
        if not transform.is_scaling():
            logger.warning(
                "Level transform is not a pure scaling; calibration uses its diagonal only"
            )
        pixel_size = transform.get_scale()
        origin = [float(pixel_size[d]) * int(box_min[d]) for d in range(len(box_min))]
        return cls(pixel_size=pixel_size, origin=origin)


@define
class CropParameters:
    """Values collected from the user for one crop.

    Attributes:
        center: Custom center in world space (used if ``use_custom_center``)
        use_custom_center: Use ``center`` instead of the clicked point
        width, height, depth: Crop size in level pixels
        level: Resolution level
        single_4d_stack: Combine all channels into one (x, y, c, z) volume
    """

    center: Point3D = field(converter=_to_float_tuple)
    use_custom_center: bool = False
    width: int = 1024
    height: int = 1024
    depth: int = 512
    level: int = 0
    single_4d_stack: bool = True

    @property
    def size(self) -> Tuple[int, int, int]:
        return (int(self.width), int(self.height), int(self.depth))


@define
class CropDefaults:
    """
    Last-used crop settings, shared by the crops of one session.

    Every crop overwrites these values with its own parameters, so they seed
    the parameter source of the next crop. Access is guarded by a lock; if
    several crops run at once, the last writer wins.
    """

    width: int = 1024
    height: int = 1024
    depth: int = 512
    level: int = 0
    use_custom_center: bool = False
    single_4d_stack: bool = True
    _lock: threading.Lock = field(factory=threading.Lock, init=False, eq=False, repr=False)

    def snapshot(self) -> "CropDefaults":
        """Consistent copy of the current values."""
        with self._lock:
            return CropDefaults(
                width=self.width,
                height=self.height,
                depth=self.depth,
                level=self.level,
                use_custom_center=self.use_custom_center,
                single_4d_stack=self.single_4d_stack,
            )

    def remember(self, request: "CropRequest") -> None:
        with self._lock:
            self.width, self.height, self.depth = request.size
            self.level = request.level
            self.use_custom_center = request.use_custom_center
            self.single_4d_stack = request.combine_channels

    def clamp_level(self, max_level: int) -> None:
        with self._lock:
            self.level = max_level


@define
class CropRequest:
    """
    A fully specified crop.

    Attributes:
        world_point: Clicked point in world space
        size: (width, height, depth) in level pixels
        level: Resolution level, checked against every channel
        combine_channels: Stack all channels into one (x, y, c, z) volume
        use_custom_center: Crop around ``custom_center`` instead of the click
        custom_center: Explicit center in world space (whole units)
    """

    world_point: Point3D = field(converter=_to_float_tuple)
    size: Tuple[int, int, int] = field(
        converter=_to_int_tuple, validator=_positive_size
    )
    level: int = 0
    combine_channels: bool = True
    use_custom_center: bool = False
    custom_center: Optional[Point3D] = None

    def __attrs_post_init__(self):
        if self.use_custom_center and self.custom_center is None:
            raise ValueError("use_custom_center is set but no custom_center was given")

    @classmethod
    def from_parameters(
        cls, world_point: Sequence[float], params: CropParameters
    ) -> "CropRequest":
        return cls(
            world_point=world_point,
            size=params.size,
            level=params.level,
            combine_channels=params.single_4d_stack,
            use_custom_center=params.use_custom_center,
            custom_center=params.center,
        )

    @property
    def center(self) -> Point3D:
        """World-space point the crop is centered on.

        A custom center is truncated toward zero to whole world units; the
        clicked point is used as is.
        """
        if self.use_custom_center:
            return tuple(float(int(v)) for v in self.custom_center)
        return self.world_point


@define
class ChannelCrop:
    """Crop of one channel.

    Attributes:
        channel: Channel index
        box: Pixel box in the level's pixel space
        data: Lazy (x, y, z) view of exactly ``box.size``
        calibration: Pixel size and origin
        transform: Level transform the box was resolved with
        label: Human readable label encoding the crop center
    """

    channel: int
    box: CropBox
    data: da.Array
    calibration: Calibration
    transform: AffineTransform
    label: str

    def compute(self) -> np.ndarray:
        return np.asarray(self.data.compute())


@define
class CropResult:
    """Outcome of a crop over all channels.

    Attributes:
        channels: Per-channel crops, in channel order
        level: Resolution level used
        label: Crop center as ``[x, y, z]``
        combined: (x, y, c, z) volume if channels were combined
        combined_calibration: Calibration of ``combined`` (first channel's)
    """

    channels: Tuple[ChannelCrop, ...]
    level: int
    label: str
    combined: Optional[da.Array] = None
    combined_calibration: Optional[Calibration] = None

    @property
    def is_combined(self) -> bool:
        return self.combined is not None


def wrapped_hyperstack_dims(shape: Sequence[int]) -> Tuple[int, int, int]:
    """
    (channels, slices, frames) a generic image wrapper assigns to a block.

    Generic wrappers label the third axis of an (x, y, z) block as channels,
    so a depth stack comes out as ``(depth, 1, 1)``.
    """
    extra = list(shape[2:]) + [1] * (3 - len(shape[2:]))
    return tuple(int(v) for v in extra[:3])


def depth_stack_layout(
    n_channels: int, n_slices: int, n_frames: int, depth: int
) -> Tuple[int, int, int]:
    """
    Relabel a wrapped single-channel block as a depth stack.

    Exactly one of the three counts must be larger than one and equal to the
    crop depth; the layout returned is then ``(1, depth, 1)``.

    Raises:
        AmbiguousLayoutError: If no count or more than one count is larger
            than one, or the non-trivial count is not the depth
    """
    counts = (int(n_channels), int(n_slices), int(n_frames))
    non_trivial = [c for c in counts if c > 1]
    if len(non_trivial) != 1:
        raise AmbiguousLayoutError(
            f"Cannot tell channels from depth for (channels, slices, frames)={counts}"
        )
    if non_trivial[0] != depth:
        raise AmbiguousLayoutError(
            f"Non-trivial axis of {counts} does not match depth {depth}"
        )
    return (1, int(depth), 1)


class CropController:
    """
    Crop multi-channel, multi-resolution sources around world-space points.

    Args:
        sources: One source per channel
        display_to_world: Converts a display click ``(x, y)`` to a world point
        parameter_source: Called with the current defaults and the rounded
            clicked point; returns CropParameters, or None to cancel
        defaults: Last-used settings (default: a new CropDefaults)
        max_workers: Extract channels on this many threads (default: caller's
            thread only)

    Examples:
        >>> controller = CropController(sources)
        >>> result = controller.crop(CropRequest((100, 100, 50), (64, 64, 32)))
        >>> result.channels[0].box.min
        (68, 68, 34)
    """

    def __init__(
        self,
        sources: Sequence[MultiResolutionSource],
        display_to_world: Optional[DisplayToWorld] = None,
        parameter_source: Optional[
            Callable[[CropDefaults, Tuple[int, ...]], Optional[CropParameters]]
        ] = None,
        defaults: Optional[CropDefaults] = None,
        max_workers: Optional[int] = None,
    ):
        self.sources = list(sources)
        self.display_to_world = display_to_world
        self.parameter_source = parameter_source
        self.defaults = defaults if defaults is not None else CropDefaults()
        self.max_workers = max_workers
        self.state = CropState.AWAITING_CLICK

    def _set_state(self, state: CropState) -> None:
        logger.debug("Crop state %s -> %s", self.state.name, state.name)
        self.state = state

    def click(
        self, x: int, y: int, cancel: Optional[threading.Event] = None
    ) -> Optional[CropResult]:
        """
        Crop around a click in display coordinates.

        Returns:
            CropResult, or None if the parameter source cancelled

        Raises:
            ValueError: If no display_to_world or parameter_source is set
        """
        if self.display_to_world is None or self.parameter_source is None:
            raise ValueError("click() needs display_to_world and parameter_source")

        self._set_state(CropState.AWAITING_CLICK)
        world_point = tuple(float(v) for v in self.display_to_world(x, y))
        rounded = tuple(round_half_up(v) for v in world_point)

        params = self.parameter_source(self.defaults.snapshot(), rounded)
        if params is None:
            logger.info("Crop cancelled")
            self._set_state(CropState.ABORTED)
            return None

        return self.crop(CropRequest.from_parameters(world_point, params), cancel)

    def validate(self, request: CropRequest) -> None:
        """
        Check the requested level against every channel.

        Raises:
            LevelRangeError: For the first channel lacking the level; the
                default level is clamped to that channel's coarsest level
        """
        for channel, source in enumerate(self.sources):
            try:
                source.check_level(request.level, channel)
            except LevelRangeError as e:
                logger.warning(str(e))
                self.defaults.clamp_level(source.num_mipmap_levels - 1)
                raise

    def resolve_box(
        self, channel: int, center: Sequence[float], size: Sequence[int], level: int
    ) -> Tuple[CropBox, AffineTransform]:
        """Map a world-space center to a pixel box of one channel's level."""
        transform = self.sources[channel].level_transform(level)
        pixel_center = transform.apply_inverse(np.asarray(center, dtype=float))
        return CropBox.centered_at(pixel_center, size), transform

    def _extract(
        self,
        channel: int,
        request: CropRequest,
        label: str,
        cancel: Optional[threading.Event],
    ) -> ChannelCrop:
        if cancel is not None and cancel.is_set():
            raise CropCancelledError(f"Crop cancelled before channel {channel}")

        box, transform = self.resolve_box(
            channel, request.center, request.size, request.level
        )
        logger.info(
            "Cropping %s pixels at %s using scale level %d",
            list(box.size),
            list(box.min),
            request.level,
        )
        level_data = self.sources[channel].get_source(request.level)
        data = zero_extended_offset_view(level_data, box.min, box.size)
        return ChannelCrop(
            channel=channel,
            box=box,
            data=data,
            calibration=Calibration.from_transform(transform, box.min),
            transform=transform,
            label=label if request.combine_channels else f"channel {channel} {label}",
        )

    def crop(
        self, request: CropRequest, cancel: Optional[threading.Event] = None
    ) -> CropResult:
        """
        Run one crop over all channels.

        Either every channel is cropped or an exception is raised and no
        result is produced.

        Args:
            request: What to crop
            cancel: Optional event checked before each channel's extraction

        Raises:
            LevelRangeError: If some channel lacks the requested level
            StorageReadError: If a level cannot be read
            CropCancelledError: If ``cancel`` was set during extraction
        """
        self._set_state(CropState.PARAMETERS_COLLECTED)
        self.defaults.remember(request)
        label = format_point(request.center)

        self._set_state(CropState.VALIDATING)
        try:
            self.validate(request)
        except LevelRangeError:
            self._set_state(CropState.ABORTED)
            raise

        self._set_state(CropState.EXTRACTING)
        channels = range(len(self.sources))
        try:
            if self.max_workers and self.max_workers > 1 and len(self.sources) > 1:
                with ThreadPoolExecutor(max_workers=self.max_workers) as pool:
                    crops = list(
                        pool.map(
                            lambda c: self._extract(c, request, label, cancel), channels
                        )
                    )
            else:
                crops = [self._extract(c, request, label, cancel) for c in channels]
        except Exception:
            self._set_state(CropState.ABORTED)
            raise

        self._set_state(CropState.ASSEMBLING)
        result = CropResult(channels=tuple(crops), level=request.level, label=label)
        if request.combine_channels and crops:
            stacked = stack_channels([c.data for c in crops])
            result = evolve(
                result,
                combined=swap_channel_and_depth(stacked),
                combined_calibration=crops[0].calibration,
            )

        self._set_state(CropState.DONE)
        return result

    def crop_at(
        self,
        world_point: Sequence[float],
        size: Sequence[int],
        level: int = 0,
        combine_channels: bool = True,
        cancel: Optional[threading.Event] = None,
    ) -> CropResult:
        """Crop around a world-space point without going through a click."""
        request = CropRequest(
            world_point=world_point,
            size=size,
            level=level,
            combine_channels=combine_channels,
        )
        return self.crop(request, cancel)
