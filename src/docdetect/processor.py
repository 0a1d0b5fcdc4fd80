"""
Main processor for the Document Detection module.

Orchestrates the complete pipeline:
1. Contour cascade over scene-ordered preprocessing strategies
2. Line-cluster fallback (Tier 1 -> 2 -> 3) when the cascade finds nothing
3. Sub-pixel corner refinement
4. Aspect-ratio estimation and optional rectification

"No document" is a normal outcome and is reported through DocumentResult.
"""

import logging
import time
from pathlib import Path
from typing import Optional

import numpy as np

from src.docdetect.aspect_ratio import estimate_aspect_ratio
from src.docdetect.cascade import detect_document_cascade
from src.docdetect.config_loader import DocDetectConfig
from src.docdetect.context import DetectionContext
from src.docdetect.corner_refiner import refine_corners
from src.docdetect.rectangle_solver import detect_document_lsd
from src.docdetect.rectification import rectify as rectify_document
from src.docdetect.scene_analyzer import to_gray
from src.docdetect.types import CameraIntrinsics, DocumentCorners, DocumentResult

logger = logging.getLogger(__name__)


class DocumentDetector:
    """
    Main processor for document boundary detection.

    Holds a DetectionContext, so reusing one detector across video frames
    lets the scene cache and scratch pool take effect.

    Example:
        >>> detector = DocumentDetector()
        >>> image = cv2.imread("receipt.jpg")
        >>> result = detector.process(image, rectify=True)
        >>> if result.is_found():
        ...     cv2.imwrite("receipt_flat.jpg", result.rectified)
    """

    def __init__(
        self,
        config: Optional[DocDetectConfig] = None,
        config_path: Optional[Path] = None,
    ):
        """
        Initialize the document detector.

        Args:
            config: Pre-loaded configuration object. If None, will load from file.
            config_path: Path to config file. If None, uses default location.
        """
        self.context = DetectionContext(config=config, config_path=config_path)
        self.config = self.context.config
        if config is not None:
            logger.info("Using provided configuration")
        else:
            logger.info("Loaded configuration from file")

    def process(
        self,
        image: np.ndarray,
        intrinsics: Optional[CameraIntrinsics] = None,
        rectify: bool = False,
    ) -> DocumentResult:
        """
        Execute the complete detection pipeline.

        Args:
            image: BGR, BGRA or grayscale image (not modified).
            intrinsics: Optional camera intrinsics for projective ratio
                correction and homography tie-breaking.
            rectify: Also warp the document to a top-down view.

        Returns:
            DocumentResult; corners is None when no document was found.

        Raises:
            ValueError: If the image is empty, is not 8-bit or has an unsupported
                channel count.
        """
        if image is None or image.size == 0:
            raise ValueError("Invalid input image: image is None or empty")

        start = time.perf_counter()
        logger.info("=" * 60)
        logger.info("Starting Document Detection Pipeline")
        logger.info("=" * 60)

        # Stage 1: Contour cascade
        logger.info("[Stage 1/4] Contour Cascade")
        status = detect_document_cascade(image, self.context)
        corners: Optional[DocumentCorners] = status.corners
        used_fallback = False
        gray = to_gray(image)

        # Stage 2: Line-cluster fallback
        if corners is None:
            logger.info("[Stage 2/4] Line-Cluster Fallback")
            height, width = gray.shape[:2]
            corners = detect_document_lsd(gray, width, height, self.config)
            used_fallback = corners is not None
        else:
            logger.info(
                f"[Stage 2/4] Skipped, cascade found document via "
                f"{status.best_strategy.name} ({corners.confidence:.2f})"
            )

        if corners is None:
            total_ms = (time.perf_counter() - start) * 1000.0
            partial = " (document extends past frame)" if status.is_partial_document else ""
            logger.warning(f"Pipeline finished: no document found{partial}")
            return DocumentResult(status=status, corners=None, total_ms=total_ms)

        # Stage 3: Sub-pixel refinement
        if self.config.refinement.enabled:
            logger.info("[Stage 3/4] Corner Refinement")
            try:
                refined = refine_corners(gray, corners.corners, config=self.config)
                corners = DocumentCorners(refined, corners.confidence, corners.elapsed_ms, corners.source)
            except ValueError as e:
                logger.warning(f"Corner refinement skipped: {e}")
        else:
            logger.info("[Stage 3/4] Corner Refinement disabled")

        # Stage 4: Aspect ratio and rectification
        logger.info("[Stage 4/4] Aspect Ratio Estimation")
        aspect = estimate_aspect_ratio(corners.corners, intrinsics, self.config)
        logger.info(
            f"Estimated ratio {aspect.estimated_ratio:.3f} "
            f"({aspect.matched_format_name or 'unmatched'}, confidence={aspect.confidence:.2f})"
        )

        rectified = None
        if rectify:
            target_ratio = None
            if self.config.rectification.use_estimated_ratio and aspect.matched_format is not None:
                target_ratio = aspect.estimated_ratio
            rectified = rectify_document(
                image, corners.corners, target_ratio, self.config.rectification.interpolation
            )
            logger.info(f"Rectified image size: {rectified.shape[1]}x{rectified.shape[0]}")

        total_ms = (time.perf_counter() - start) * 1000.0
        logger.info("=" * 60)
        logger.info(f"Pipeline FOUND document via {corners.source.value} in {total_ms:.1f} ms")
        logger.info("=" * 60)

        return DocumentResult(
            status=status,
            corners=corners,
            aspect_ratio=aspect,
            rectified=rectified,
            used_fallback=used_fallback,
            total_ms=total_ms,
        )

    def release(self) -> None:
        """Release cached state held by the detection context."""
        self.context.release()


def detect_document(
    image: np.ndarray,
    intrinsics: Optional[CameraIntrinsics] = None,
    rectify: bool = False,
    config: Optional[DocDetectConfig] = None,
) -> DocumentResult:
    """
    Convenience function for one-shot document detection.

    Args:
        image: BGR, BGRA or grayscale image.
        intrinsics: Optional camera intrinsics.
        rectify: Also produce the rectified document.
        config: Optional custom configuration. Loads the default file if None.

    Returns:
        DocumentResult object.

    Example:
        >>> result = detect_document(cv2.imread("page.jpg"))
        >>> print(result.get_summary())
    """
    detector = DocumentDetector(config=config)
    return detector.process(image, intrinsics=intrinsics, rectify=rectify)
