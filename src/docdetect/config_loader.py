"""
Configuration loader with Pydantic validation for the Document Detection module.

Every tunable constant of the pipeline lives in config.yaml. Sections map
one-to-one onto the pydantic models below; omitted keys fall back to the
model defaults, so a partial YAML file is valid.
"""

import logging
from pathlib import Path
from typing import Literal

import yaml
from pydantic import BaseModel, Field, ValidationError

logger = logging.getLogger(__name__)

# Default configuration path (relative to this file)
DEFAULT_CONFIG_PATH = Path(__file__).parent / "config.yaml"


class SceneConfig(BaseModel):
    """Lighting classification thresholds and cache size.

    Attributes:
        low_light_mean: Mean intensity below which a scene is low-light.
        low_contrast_stddev: Stddev below which a scene is low-contrast.
        low_diff_mean: Mean above which a scene may be white-on-white.
        low_diff_stddev: Stddev below which a bright scene is white-on-white.
        cache_frames: Frames a cached analysis stays valid.
    """

    low_light_mean: float = Field(default=80.0, ge=0.0, le=255.0)
    low_contrast_stddev: float = Field(default=30.0, ge=0.0)
    low_diff_mean: float = Field(default=180.0, ge=0.0, le=255.0)
    low_diff_stddev: float = Field(default=35.0, ge=0.0)
    cache_frames: int = Field(default=10, ge=0)


class EdgeConfig(BaseModel):
    """Canny thresholds and line suppression.

    Attributes:
        threshold_statistic: Intensity statistic driving auto thresholds.
            "mean" is the fast proxy, "median" the exact histogram median.
        low_factor: Multiplier for the low Canny threshold.
        high_factor: Multiplier for the high Canny threshold.
        dog_low / dog_high: Fixed thresholds for the DOG strategy.
        mask_thickness: Width of the strip painted over a spanning line.
        bridge_length_px: Reach across an erased strip when reconnecting
            document edges that crossed the line; covers the strip plus the
            spacing of a double grout edge.
    """

    threshold_statistic: Literal["mean", "median"] = "mean"
    low_factor: float = Field(default=0.67, gt=0.0)
    high_factor: float = Field(default=1.33, gt=0.0)
    canny_low_min: float = Field(default=10.0, ge=0.0)
    canny_low_max: float = Field(default=200.0, ge=0.0)
    canny_high_min: float = Field(default=30.0, ge=0.0)
    canny_high_max: float = Field(default=250.0, ge=0.0)
    dog_low: float = Field(default=10.0, ge=0.0)
    dog_high: float = Field(default=30.0, ge=0.0)
    suppress_spanning_lines: bool = True
    span_min_fraction: float = Field(default=0.70, gt=0.0, le=1.0)
    hough_threshold: int = Field(default=150, gt=0)
    hough_max_gap: float = Field(default=15.0, ge=0.0)
    border_margin_px: float = Field(default=15.0, ge=0.0)
    mask_thickness: int = Field(default=3, gt=0)
    bridge_length_px: int = Field(default=17, gt=0)


class ContourConfig(BaseModel):
    """Contour filtering and partial-document detection."""

    min_area_ratio: float = Field(default=0.02, ge=0.0, le=1.0)
    approx_epsilon_ratio: float = Field(default=0.03, gt=0.0, le=1.0)
    partial_min_area_ratio: float = Field(default=0.08, ge=0.0, le=1.0)
    edge_proximity_px: float = Field(default=5.0, ge=0.0)
    min_touched_edges: int = Field(default=2, ge=1, le=4)


class RankingConfig(BaseModel):
    """Quad scoring weights, edge-density validation and confidence blend."""

    weight_area: float = Field(default=0.4, ge=0.0, le=1.0)
    weight_angle: float = Field(default=0.4, ge=0.0, le=1.0)
    weight_aspect: float = Field(default=0.2, ge=0.0, le=1.0)
    aspect_sigma: float = Field(default=0.10, gt=0.0)
    samples_per_side: int = Field(default=20, gt=0)
    search_radius: int = Field(default=3, ge=0)
    weight_score: float = Field(default=0.6, ge=0.0, le=1.0)
    weight_density: float = Field(default=0.4, ge=0.0, le=1.0)
    ambiguity_margin: float = Field(default=0.10, gt=0.0, le=1.0)
    ambiguity_min_penalty: float = Field(default=0.8, ge=0.0, le=1.0)


class CascadeConfig(BaseModel):
    """Cascade termination rules."""

    short_circuit_confidence: float = Field(default=0.65, ge=0.0, le=1.0)
    min_confidence: float = Field(default=0.35, ge=0.0, le=1.0)
    time_budget_ms: float = Field(default=25.0, gt=0.0)


class LineClusterConfig(BaseModel):
    """Segment detection and clustering."""

    min_length_fraction: float = Field(default=0.05, ge=0.0, le=1.0)
    angle_tolerance_deg: float = Field(default=8.0, gt=0.0)
    rho_tolerance_px: float = Field(default=15.0, gt=0.0)
    min_cluster_length_fraction: float = Field(default=0.20, ge=0.0, le=1.0)
    max_clusters_per_orientation: int = Field(default=6, gt=0)


class SolverConfig(BaseModel):
    """Tiered rectangle solver constants."""

    bounds_overflow_fraction: float = Field(default=0.05, ge=0.0)
    min_quad_area_fraction: float = Field(default=0.10, ge=0.0, le=1.0)
    min_interior_angle_deg: float = Field(default=60.0, ge=0.0, le=90.0)
    max_interior_angle_deg: float = Field(default=120.0, ge=90.0, le=180.0)
    reference_gradient: float = Field(default=20.0, gt=0.0)
    min_side_score: float = Field(default=0.1, ge=0.0, le=1.0)
    min_passing_sides: int = Field(default=3, ge=1, le=4)
    gradient_samples_per_side: int = Field(default=50, gt=0)
    tier1_confidence: tuple[float, float] = (0.50, 0.85)
    tier2_confidence: tuple[float, float] = (0.45, 0.75)
    tier3_confidence: tuple[float, float] = (0.40, 0.65)
    coarse_step_px: float = Field(default=8.0, gt=0.0)
    fine_half_window_px: float = Field(default=12.0, gt=0.0)
    coarse_top_peaks: int = Field(default=3, gt=0)
    radon_samples: int = Field(default=100, gt=1)
    tier2_min_edge_distance_fraction: float = Field(default=0.15, ge=0.0)
    tier2_search_extension_fraction: float = Field(default=0.50, gt=0.0)
    tier2_parallel_extension_scale: float = Field(default=0.3, gt=0.0)
    tier2_max_candidate_peaks: int = Field(default=5, gt=0)
    tier3_theta_offsets_deg: list[float] = Field(
        default_factory=lambda: [-8.0, -6.0, -4.0, -2.0, 0.0, 2.0, 4.0, 6.0, 8.0]
    )
    tier3_rho_min_fraction: float = Field(default=0.15, ge=0.0, le=1.0)
    tier3_rho_max_fraction: float = Field(default=0.85, ge=0.0, le=1.0)
    tier3_max_peaks: int = Field(default=4, ge=2)
    tier3_peak_separation_fraction: float = Field(default=0.10, ge=0.0)
    tier3_min_gradient_density: float = Field(default=0.05, ge=0.0, le=1.0)
    tier3_centering_bonus: float = Field(default=0.10, ge=0.0)
    tier3_aspect_bonus: float = Field(default=0.05, ge=0.0)


class AspectRatioConfig(BaseModel):
    """Single-frame ratio estimation and snapping."""

    angular_max_severity_deg: float = Field(default=15.0, ge=0.0)
    projective_min_severity_deg: float = Field(default=20.0, ge=0.0)
    snap_threshold: float = Field(default=0.06, ge=0.0)
    snap_sigma: float = Field(default=0.04, gt=0.0)
    clear_winner_factor: float = Field(default=2.0, ge=1.0)
    unverified_confidence_scale: float = Field(default=0.8, ge=0.0, le=1.0)
    unmatched_confidence: float = Field(default=0.5, ge=0.0, le=1.0)


class MultiFrameConfig(BaseModel):
    """Multi-frame accumulation."""

    min_frames: int = Field(default=3, ge=3)
    variance_scale: float = Field(default=1000.0, gt=0.0)
    min_ratio: float = Field(default=0.1, gt=0.0, le=1.0)
    degenerate_epsilon: float = Field(default=1e-12, gt=0.0)


class PoolConfig(BaseModel):
    """Scratch-buffer pool."""

    capacity: int = Field(default=8, gt=0)


class RefinementConfig(BaseModel):
    """Sub-pixel corner refinement."""

    enabled: bool = True
    win_size: int = Field(default=5, gt=0)
    max_iterations: int = Field(default=30, gt=0)
    epsilon: float = Field(default=0.01, gt=0.0)


class RectificationConfig(BaseModel):
    """Perspective warp."""

    interpolation: Literal["nearest", "linear", "cubic", "area", "lanczos"] = "cubic"
    use_estimated_ratio: bool = True


class SmoothingConfig(BaseModel):
    """Temporal quad smoothing."""

    window_size: int = Field(default=5, gt=0)
    miss_threshold: int = Field(default=10, gt=0)
    stable_threshold: int = Field(default=15, gt=0)
    max_corner_drift_fraction: float = Field(default=0.02, gt=0.0)


class KernelConfig(BaseModel):
    """Directional-gradient accumulation kernel."""

    prefer_accelerated: bool = True
    tilt_angles_deg: list[float] = Field(
        default_factory=lambda: [-10.0, -5.0, 0.0, 5.0, 10.0]
    )
    kernel_length: int = Field(default=21, gt=0)
    threshold_percentile: float = Field(default=0.90, gt=0.0, lt=1.0)


class DocDetectConfig(BaseModel):
    """Complete document detection configuration."""

    scene: SceneConfig = Field(default_factory=SceneConfig)
    edges: EdgeConfig = Field(default_factory=EdgeConfig)
    contours: ContourConfig = Field(default_factory=ContourConfig)
    ranking: RankingConfig = Field(default_factory=RankingConfig)
    cascade: CascadeConfig = Field(default_factory=CascadeConfig)
    line_clusters: LineClusterConfig = Field(default_factory=LineClusterConfig)
    solver: SolverConfig = Field(default_factory=SolverConfig)
    aspect_ratio: AspectRatioConfig = Field(default_factory=AspectRatioConfig)
    multi_frame: MultiFrameConfig = Field(default_factory=MultiFrameConfig)
    pool: PoolConfig = Field(default_factory=PoolConfig)
    refinement: RefinementConfig = Field(default_factory=RefinementConfig)
    rectification: RectificationConfig = Field(default_factory=RectificationConfig)
    smoothing: SmoothingConfig = Field(default_factory=SmoothingConfig)
    kernel: KernelConfig = Field(default_factory=KernelConfig)

    @classmethod
    def default(cls) -> "DocDetectConfig":
        """Create configuration from built-in defaults (no file access)."""
        return cls()


def load_config(config_path: Path = DEFAULT_CONFIG_PATH) -> DocDetectConfig:
    """
    Load document detection configuration from YAML file.

    Args:
        config_path: Path to the configuration YAML file.

    Returns:
        Validated DocDetectConfig object.

    Raises:
        FileNotFoundError: If config file doesn't exist.
        ValueError: If config is invalid or fails consistency checks.

    Example:
        >>> config = load_config()
        >>> print(config.cascade.short_circuit_confidence)
        0.65
    """
    config_path = Path(config_path)
    if not config_path.exists():
        raise FileNotFoundError(f"Config file not found: {config_path}")

    logger.debug(f"Loading docdetect config from {config_path}")

    with open(config_path, "r", encoding="utf-8") as f:
        raw_config = yaml.safe_load(f) or {}

    try:
        config = DocDetectConfig(**raw_config)
        _validate_config(config)
        logger.info("Successfully loaded docdetect configuration")
        return config
    except (TypeError, ValueError, ValidationError) as e:
        raise ValueError(f"Invalid configuration file: {e}") from e


def _validate_config(config: DocDetectConfig) -> None:
    """
    Validate cross-field consistency that single-field constraints miss.

    Raises:
        ValueError: If any configuration value is inconsistent.
    """
    edges = config.edges
    if edges.canny_low_min >= edges.canny_low_max:
        raise ValueError(
            f"canny_low_min ({edges.canny_low_min}) must be less than "
            f"canny_low_max ({edges.canny_low_max})"
        )
    if edges.canny_high_min >= edges.canny_high_max:
        raise ValueError(
            f"canny_high_min ({edges.canny_high_min}) must be less than "
            f"canny_high_max ({edges.canny_high_max})"
        )
    if edges.bridge_length_px <= edges.mask_thickness:
        raise ValueError(
            f"bridge_length_px ({edges.bridge_length_px}) must exceed "
            f"mask_thickness ({edges.mask_thickness})"
        )

    ranking = config.ranking
    weight_sum = ranking.weight_area + ranking.weight_angle + ranking.weight_aspect
    if abs(weight_sum - 1.0) > 1e-6:
        raise ValueError(f"Quad score weights must sum to 1.0, got {weight_sum:.3f}")

    if config.cascade.min_confidence > config.cascade.short_circuit_confidence:
        raise ValueError("min_confidence cannot exceed short_circuit_confidence")

    solver = config.solver
    for name in ("tier1_confidence", "tier2_confidence", "tier3_confidence"):
        low, high = getattr(solver, name)
        if not 0.0 <= low <= high <= 1.0:
            raise ValueError(f"{name} must satisfy 0 <= min <= max <= 1, got {low}, {high}")
    if solver.tier3_rho_min_fraction >= solver.tier3_rho_max_fraction:
        raise ValueError("tier3_rho_min_fraction must be less than tier3_rho_max_fraction")

    ratio = config.aspect_ratio
    if ratio.angular_max_severity_deg > ratio.projective_min_severity_deg:
        raise ValueError(
            "angular_max_severity_deg must not exceed projective_min_severity_deg"
        )

    if config.kernel.kernel_length % 2 == 0:
        raise ValueError(
            f"kernel_length must be odd, got {config.kernel.kernel_length}"
        )

    logger.debug("Configuration validation passed")
