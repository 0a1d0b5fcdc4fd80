"""
Document Detection CLI.

Runs the full detection pipeline on one image and prints the corners,
confidence and estimated aspect ratio.

Usage:
    # Detect and print the result
    python scripts/detect_document.py photo.jpg

    # Use calibrated intrinsics and save the rectified page
    python scripts/detect_document.py photo.jpg --fx 1450 --fy 1450 --cx 960 --cy 540 \\
        --rectify page.png

    # Custom configuration with debug logging
    python scripts/detect_document.py photo.jpg --config my_config.yaml --verbose
"""

import argparse
import logging
import sys
from pathlib import Path

import cv2

# Add project root to path
PROJECT_ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from src.docdetect.processor import DocumentDetector  # noqa: E402
from src.docdetect.types import CameraIntrinsics  # noqa: E402

logger = logging.getLogger(__name__)


def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Detect a document in an image and estimate its aspect ratio",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("image", type=Path, help="Input image path")
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Path to config YAML (default: src/docdetect/config.yaml)",
    )
    parser.add_argument("--fx", type=float, default=None, help="Focal length x in pixels")
    parser.add_argument("--fy", type=float, default=None, help="Focal length y in pixels")
    parser.add_argument("--cx", type=float, default=None, help="Principal point x in pixels")
    parser.add_argument("--cy", type=float, default=None, help="Principal point y in pixels")
    parser.add_argument(
        "--rectify",
        type=Path,
        default=None,
        metavar="OUT",
        help="Write the rectified document to this path",
    )
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable debug logging")
    return parser.parse_args(argv)


def build_intrinsics(args: argparse.Namespace):
    values = (args.fx, args.fy, args.cx, args.cy)
    if all(v is None for v in values):
        return None
    if any(v is None for v in values):
        raise ValueError("--fx, --fy, --cx and --cy must be given together")
    return CameraIntrinsics(fx=args.fx, fy=args.fy, cx=args.cx, cy=args.cy)


def main(argv=None) -> int:
    """Main entry point for the detection CLI."""
    args = parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    image = cv2.imread(str(args.image), cv2.IMREAD_COLOR)
    if image is None:
        logger.error(f"Could not read image: {args.image}")
        return 1

    try:
        intrinsics = build_intrinsics(args)
        detector = DocumentDetector(config_path=args.config)
        result = detector.process(image, intrinsics=intrinsics, rectify=args.rectify is not None)
    except (FileNotFoundError, ValueError, cv2.error) as e:
        logger.error(f"Detection failed: {e}")
        return 1

    print(result.get_summary())
    if not result.is_found():
        return 2

    labels = ("TL", "TR", "BR", "BL")
    for label, (x, y) in zip(labels, result.corners.corners):
        print(f"  {label}: ({x:.1f}, {y:.1f})")
    print(f"  time: {result.total_ms:.1f} ms")

    if args.rectify is not None and result.rectified is not None:
        cv2.imwrite(str(args.rectify), result.rectified)
        logger.info(f"Rectified document saved to {args.rectify}")

    return 0


if __name__ == "__main__":
    sys.exit(main())
