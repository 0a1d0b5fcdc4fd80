"""
Document Boundary Detection & Aspect-Ratio Estimation

Locates a rectangular document (page, receipt, card) in a single image or
video frame and estimates its physical aspect ratio.

Pipeline stages:
1. Contour cascade (scene-ordered preprocessing strategies)
2. Line-cluster fallback (Tier 1 -> 2 -> 3 rectangle solver)
3. Sub-pixel corner refinement
4. Aspect-ratio estimation and optional rectification
"""

from src.docdetect.aspect_ratio import compute_raw_ratio, estimate_aspect_ratio
from src.docdetect.cascade import detect_document_cascade
from src.docdetect.config_loader import DocDetectConfig, load_config
from src.docdetect.context import DetectionContext
from src.docdetect.geometry import order_corners
from src.docdetect.multi_frame import MultiFrameAspectEstimator
from src.docdetect.processor import DocumentDetector, detect_document
from src.docdetect.quad_smoother import QuadSmoother
from src.docdetect.rectangle_solver import detect_document_lsd
from src.docdetect.rectification import rectify
from src.docdetect.types import (
    KNOWN_FORMATS,
    AspectRatioEstimate,
    CameraIntrinsics,
    DetectionOutcome,
    DetectionSource,
    DetectionStatus,
    DocumentCorners,
    DocumentResult,
    KnownFormat,
    MultiFrameEstimate,
    PreprocessStrategy,
)

__all__ = [
    "DocumentDetector",
    "detect_document",
    "detect_document_cascade",
    "detect_document_lsd",
    "estimate_aspect_ratio",
    "compute_raw_ratio",
    "MultiFrameAspectEstimator",
    "QuadSmoother",
    "DetectionContext",
    "order_corners",
    "rectify",
    "load_config",
    "DocDetectConfig",
    "KNOWN_FORMATS",
    "AspectRatioEstimate",
    "CameraIntrinsics",
    "DetectionOutcome",
    "DetectionSource",
    "DetectionStatus",
    "DocumentCorners",
    "DocumentResult",
    "KnownFormat",
    "MultiFrameEstimate",
    "PreprocessStrategy",
]
