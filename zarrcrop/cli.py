"""Console script for cropping multi-resolution exports.

Console Scripts:
    zcrop: Crop all (or selected) channels of an export around a world point
"""

import argparse
import sys
from pathlib import Path
from typing import List, Tuple

from .core import CropController, CropRequest
from .enums import ExportFormat
from .export import export_result
from .io import ZarrExportReader
from .logging import configure_logging, get_logger
from .source import build_sources

logger = get_logger(__name__)


def parse_int_list(value: str) -> List[int]:
    """Parse comma-separated list of integers."""
    if not value.strip():
        return []
    return [int(x.strip()) for x in value.split(",")]


def parse_float_tuple(value: str) -> Tuple[float, float, float]:
    """Parse comma-separated tuple of 3 floats."""
    parts = [float(x.strip()) for x in value.split(",")]
    if len(parts) != 3:
        raise argparse.ArgumentTypeError("Expected exactly 3 comma-separated floats")
    return tuple(parts)


def parse_size(value: str) -> Tuple[int, int, int]:
    """Parse comma-separated tuple of 3 positive integers."""
    parts = [int(x.strip()) for x in value.split(",")]
    if len(parts) != 3 or any(p <= 0 for p in parts):
        raise argparse.ArgumentTypeError(
            "Expected exactly 3 comma-separated positive integers"
        )
    return tuple(parts)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Crop a multi-resolution export around a world-space point",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  zcrop data.zarr crop.tif --center 100,100,50 --size 64,64,32
  zcrop data.zarr crop.nii.gz --center 100,100,50 --size 64,64,32 --level 1
  zcrop data.zarr crop.tif --center 100,100,50 --size 64,64,32 --separate-channels
  zcrop data.zarr.zip crop.tif --center 10,10,5 --size 8,8,4 --channels 0,2
        """,
    )

    parser.add_argument("input", help="Input store (directory, .zip or URL)")
    parser.add_argument(
        "output",
        help="Output file (.nii/.nii.gz for NIfTI, .tif/.tiff for ImageJ TIFF)",
    )
    parser.add_argument(
        "--center",
        type=parse_float_tuple,
        required=True,
        help="Crop center in world coordinates, e.g. '100,100,50'",
    )
    parser.add_argument(
        "--size",
        type=parse_size,
        default=(1024, 1024, 512),
        help="Crop size in pixels as 'width,height,depth' (default: 1024,1024,512)",
    )
    parser.add_argument(
        "--level",
        type=int,
        default=0,
        help="Resolution level to crop from (0 = highest resolution) (default: 0)",
    )
    parser.add_argument(
        "--channels",
        type=parse_int_list,
        default=None,
        help="Comma-separated channel indices to crop (default: all)",
    )
    parser.add_argument(
        "--separate-channels",
        action="store_true",
        help="Write one file per channel instead of a single 4D stack",
    )
    parser.add_argument(
        "--format",
        choices=[f.name.lower() for f in ExportFormat],
        default=None,
        help="Output format (default: inferred from the output extension)",
    )
    parser.add_argument(
        "--log-level",
        type=str,
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level (default: INFO)",
    )
    return parser


def zcrop(argv=None):
    """Console script to crop an export around a world point."""
    args = build_parser().parse_args(argv)
    configure_logging(level=args.log_level)

    input_path = args.input
    if "://" not in input_path and not Path(input_path).exists():
        print(f"Error: Input path '{input_path}' does not exist", file=sys.stderr)
        sys.exit(1)

    try:
        with ZarrExportReader(input_path) as reader:
            sources = build_sources(reader, channels=args.channels)
            controller = CropController(sources)
            request = CropRequest(
                world_point=args.center,
                size=args.size,
                level=args.level,
                combine_channels=not args.separate_channels,
            )
            result = controller.crop(request)
            fmt = ExportFormat[args.format.upper()] if args.format else None
            written = export_result(result, args.output, fmt)

        for path in written:
            print(f"Saved {path}")

    except Exception as e:
        print(f"Error during crop: {e}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    zcrop()
