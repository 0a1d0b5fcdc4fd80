"""
Data types and structures for the Document Detection module.

Provides type-safe containers for detection results, line evidence,
aspect-ratio estimates and scene statistics. Geometry is carried as numpy
arrays; corner sets always have shape (4, 2) in [TL, TR, BR, BL] order.
"""

import math
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Optional

import numpy as np

from src.docdetect.geometry import is_convex


class PreprocessStrategy(Enum):
    """Preprocessing strategies tried by the detection cascade."""

    STANDARD = "standard"  # Grayscale + 9x9 Gaussian
    CLAHE_ENHANCED = "clahe_enhanced"  # CLAHE + 5x5 Gaussian
    SATURATION_CHANNEL = "saturation_channel"  # Inverted HSV saturation
    BILATERAL = "bilateral"  # Edge-preserving denoise
    HEAVY_MORPH = "heavy_morph"  # Standard filter, 5x5 close after Canny
    ADAPTIVE_THRESHOLD = "adaptive_threshold"  # Binary output
    LAB_CLAHE = "lab_clahe"  # LAB L-channel + aggressive CLAHE
    GRADIENT_MAGNITUDE = "gradient_magnitude"  # Binary output
    DOG = "dog"  # Difference of Gaussians, fixed low Canny thresholds
    MULTICHANNEL_FUSION = "multichannel_fusion"  # Binary output
    DIRECTIONAL_GRADIENT = "directional_gradient"  # Binary output

    @property
    def is_binary_output(self) -> bool:
        """True if the strategy already yields a 0/255 edge map (skips Canny)."""
        return self in (
            PreprocessStrategy.ADAPTIVE_THRESHOLD,
            PreprocessStrategy.GRADIENT_MAGNITUDE,
            PreprocessStrategy.MULTICHANNEL_FUSION,
            PreprocessStrategy.DIRECTIONAL_GRADIENT,
        )


class DetectionOutcome(Enum):
    """Outcome of a detection attempt."""

    FOUND = "FOUND"
    NOT_FOUND = "NOT_FOUND"


class DetectionSource(Enum):
    """Which detector produced a set of corners."""

    CONTOUR = "contour"
    LSD_TIER1 = "lsd_tier1"
    LSD_TIER2 = "lsd_tier2"
    LSD_TIER3 = "lsd_tier3"


class RatioMethod(Enum):
    """Regime used by the single-frame aspect-ratio estimator."""

    ANGULAR = "angular"
    PROJECTIVE = "projective"
    BLENDED = "blended"


@dataclass(frozen=True, eq=False)
class DocumentCorners:
    """
    A detected document quadrilateral.

    Attributes:
        corners: Array of shape (4, 2) ordered [TL, TR, BR, BL].
        confidence: Heuristic confidence in [0.0, 1.0].
        elapsed_ms: Wall-clock time spent producing this detection.
        source: Detector that produced the corners.
    """

    corners: np.ndarray
    confidence: float
    elapsed_ms: float = 0.0
    source: DetectionSource = DetectionSource.CONTOUR

    def __post_init__(self):
        corners = np.asarray(self.corners, dtype=np.float64)
        if corners.shape != (4, 2):
            raise ValueError(
                f"Expected 4 corners with shape (4, 2), got shape {corners.shape}"
            )
        if not np.isfinite(corners).all():
            raise ValueError("Corner coordinates must be finite")
        if not is_convex(corners):
            raise ValueError(f"Corners do not form a convex quadrilateral: {corners.tolist()}")
        if not 0.0 <= self.confidence <= 1.0:
            raise ValueError(f"Confidence must be in [0, 1], got {self.confidence}")
        object.__setattr__(self, "corners", corners)

    def with_elapsed(self, elapsed_ms: float) -> "DocumentCorners":
        """Return a copy with the elapsed time replaced."""
        return replace(self, elapsed_ms=elapsed_ms)


@dataclass(frozen=True)
class LineSegment:
    """A line segment produced by the segment detector."""

    x1: float
    y1: float
    x2: float
    y2: float
    width: float = 1.0

    @property
    def length(self) -> float:
        return math.hypot(self.x2 - self.x1, self.y2 - self.y1)

    @property
    def angle(self) -> float:
        """Undirected orientation in degrees, normalized to [0, 180)."""
        deg = math.degrees(math.atan2(self.y2 - self.y1, self.x2 - self.x1))
        if deg < 0.0:
            deg += 180.0
        if deg >= 180.0:
            deg -= 180.0
        return deg

    @property
    def midpoint(self) -> tuple[float, float]:
        return ((self.x1 + self.x2) / 2.0, (self.y1 + self.y2) / 2.0)


@dataclass
class EdgeCluster:
    """
    A group of roughly collinear segments describing one document edge.

    Attributes:
        segments: Member segments.
        angle: Length-weighted mean angle in degrees [0, 180).
        rho: Length-weighted signed offset from the image center, measured
            along the normal at (angle + 90) degrees.
        total_length: Sum of member segment lengths.
        is_horizontal: Orientation class of the cluster.
    """

    segments: list[LineSegment]
    angle: float
    rho: float
    total_length: float
    is_horizontal: bool

    def _endpoint_projections(self) -> list[tuple[float, tuple[float, float]]]:
        rad = math.radians(self.angle)
        dx, dy = math.cos(rad), math.sin(rad)
        projections = []
        for seg in self.segments:
            for pt in ((seg.x1, seg.y1), (seg.x2, seg.y2)):
                projections.append((pt[0] * dx + pt[1] * dy, pt))
        return projections

    @property
    def start_point(self) -> tuple[float, float]:
        """Extreme endpoint with the smallest projection on the cluster direction."""
        return min(self._endpoint_projections(), key=lambda p: p[0])[1]

    @property
    def end_point(self) -> tuple[float, float]:
        """Extreme endpoint with the largest projection on the cluster direction."""
        return max(self._endpoint_projections(), key=lambda p: p[0])[1]


@dataclass(frozen=True)
class RadonPeak:
    """A (angle, rho, response) maximum from line accumulation."""

    angle_deg: float
    rho: float
    response: float


@dataclass(frozen=True)
class CameraIntrinsics:
    """Pinhole intrinsics: focal lengths and principal point in pixels."""

    fx: float
    fy: float
    cx: float
    cy: float

    def matrix(self) -> np.ndarray:
        """Return the 3x3 camera matrix K."""
        return np.array(
            [[self.fx, 0.0, self.cx], [0.0, self.fy, self.cy], [0.0, 0.0, 1.0]],
            dtype=np.float64,
        )


@dataclass(frozen=True)
class KnownFormat:
    """A canonical document format. Ratio is min(side)/max(side)."""

    name: str
    ratio: float


KNOWN_FORMATS: tuple[KnownFormat, ...] = (
    KnownFormat("A4", 1.0 / 1.414),
    KnownFormat("US Letter", 1.0 / 1.294),
    KnownFormat("ID Card", 1.0 / 1.586),
    KnownFormat("Business Card", 1.0 / 1.75),
    KnownFormat("Receipt", 1.0 / 3.0),
    KnownFormat("Square", 1.0),
)


@dataclass(frozen=True)
class AspectRatioEstimate:
    """
    Single-frame aspect-ratio estimate.

    Attributes:
        estimated_ratio: min/max side ratio in (0, 1].
        matched_format: Canonical format the ratio snapped to, if any.
        confidence: Heuristic confidence in [0, 1].
        verified_by_homography: True when a tie was resolved with intrinsics.
        method: Correction regime that produced the ratio before snapping.
        severity_deg: Perspective severity of the input quad.
    """

    estimated_ratio: float
    matched_format: Optional[KnownFormat]
    confidence: float
    verified_by_homography: bool = False
    method: RatioMethod = RatioMethod.ANGULAR
    severity_deg: float = 0.0

    @property
    def matched_format_name(self) -> Optional[str]:
        return self.matched_format.name if self.matched_format else None


@dataclass(frozen=True)
class MultiFrameEstimate:
    """Aspect ratio accumulated over a stabilization window."""

    estimated_ratio: float
    confidence: float
    frame_count: int


@dataclass(frozen=True)
class SceneAnalysis:
    """
    Luminance statistics and the strategy order derived from them.

    The grayscale image is only attached to a freshly computed analysis;
    cached copies never carry it.
    """

    mean_intensity: float
    stddev_intensity: float
    is_low_light: bool
    is_low_contrast: bool
    is_low_differentiation: bool
    strategies: tuple[PreprocessStrategy, ...]
    gray: Optional[np.ndarray] = field(default=None, compare=False, repr=False)

    def without_gray(self) -> "SceneAnalysis":
        return replace(self, gray=None)


@dataclass
class ContourAnalysis:
    """Quadrilateral candidates plus the partial-document signal."""

    quads: list[np.ndarray]
    has_partial_document: bool


@dataclass
class QuadRankResult:
    """Winner of quad ranking with the ambiguity margin."""

    quad: Optional[np.ndarray]
    score: float
    candidate_count: int
    score_margin: float


@dataclass
class DetectionStatus:
    """
    Result of the contour cascade.

    Attributes:
        outcome: FOUND or NOT_FOUND.
        corners: Detected corners when found.
        is_partial_document: True if any strategy saw a large contour running
            off two or more frame edges.
        strategies_tried: Strategies actually executed, in order.
        best_strategy: Strategy that produced the best candidate.
    """

    outcome: DetectionOutcome
    corners: Optional[DocumentCorners]
    is_partial_document: bool = False
    strategies_tried: list[PreprocessStrategy] = field(default_factory=list)
    best_strategy: Optional[PreprocessStrategy] = None

    def is_found(self) -> bool:
        """Check if a document was found."""
        return self.outcome == DetectionOutcome.FOUND


@dataclass(frozen=True)
class PoolHandle:
    """Checkout ticket for a scratch buffer: slot index plus generation tag."""

    index: int
    generation: int


@dataclass
class DocumentResult:
    """
    Output of the full detection pipeline.

    Attributes:
        status: Contour cascade status (carries the partial-document flag).
        corners: Final corners from the cascade or the line fallback.
        aspect_ratio: Aspect-ratio estimate for the final corners.
        rectified: Perspective-corrected document when rectification was
            requested.
        used_fallback: True if the line-cluster fallback produced the corners.
        total_ms: End-to-end processing time.
    """

    status: DetectionStatus
    corners: Optional[DocumentCorners]
    aspect_ratio: Optional[AspectRatioEstimate] = None
    rectified: Optional[np.ndarray] = None
    used_fallback: bool = False
    total_ms: float = 0.0

    def is_found(self) -> bool:
        """Check if a document was located by any path."""
        return self.corners is not None

    def get_summary(self) -> str:
        """Get human-readable one-line summary."""
        if self.corners is None:
            partial = " (document extends past frame)" if self.status.is_partial_document else ""
            return f"No document found{partial}"

        summary = (
            f"Document found via {self.corners.source.value} "
            f"(confidence={self.corners.confidence:.2f})"
        )
        if self.aspect_ratio is not None:
            fmt = self.aspect_ratio.matched_format_name or "unmatched"
            summary += f", ratio={self.aspect_ratio.estimated_ratio:.3f} [{fmt}]"
        return summary
