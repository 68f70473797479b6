"""Configuration for the finger capture decision engine."""
from __future__ import annotations

from pathlib import Path
from typing import List, Optional, Union

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class CaptureSettings(BaseSettings):
    """All thresholds and runtime options, sourced from environment variables or defaults."""

    model_config = SettingsConfigDict(
        env_prefix="FINGER_CAPTURE_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        protected_namespaces=(),
    )

    # Detection backend
    model_path: Path = Field(default=Path("models/finger_detector.pt"), description="Detector weights path")
    dnn_model_path: Path = Field(default=Path("models/finger_detector.onnx"), description="ONNX export for the OpenCV DNN fallback")
    backend_order: List[str] = Field(default_factory=lambda: ["yolo", "dnn"])
    confidence_threshold: float = Field(default=0.3, ge=0.0, le=1.0, description="Minimum raw detector score")
    dnn_input_size: int = Field(default=640, ge=32)

    # Geometric validator
    position_tolerance_ratio: float = Field(default=0.015, ge=0.0, le=0.5, description="Horizontal region inflation per side")
    min_size_ratio: float = Field(default=0.05, ge=0.0, le=1.0)
    max_extent_ratio: float = Field(default=0.95, gt=0.0, le=1.0)
    aspect_min: float = Field(default=0.1, gt=0.0)
    aspect_max: float = Field(default=5.0, gt=0.0)
    shield_aspect_min: float = Field(default=0.3, gt=0.0)
    shield_aspect_max: float = Field(default=3.5, gt=0.0)
    small_box_ratio: float = Field(default=0.25, gt=0.0, le=1.0)
    min_area_ratio: float = Field(default=0.002, ge=0.0, le=1.0)
    shield_min_area_ratio: float = Field(default=0.001, ge=0.0, le=1.0)
    max_area_ratio: float = Field(default=0.60, gt=0.0, le=1.0)

    # Suppressor
    shield_enabled: bool = Field(default=True, description="Protect the narrowest candidates from suppression")
    shield_min_candidates: int = Field(default=3, ge=1)
    shielded_count: int = Field(default=1, ge=0)
    nms_threshold_shielded: float = Field(default=0.65, ge=0.0, le=1.0)
    nms_threshold_default: float = Field(default=0.5, ge=0.0, le=1.0)

    # Stability tracker
    history_size: int = Field(default=10, ge=1)
    stability_window_size: int = Field(default=5, ge=2)
    stability_iou_threshold: float = Field(default=0.5, ge=0.0, le=1.0)
    stability_size_tolerance: float = Field(default=0.30, ge=0.0, lt=1.0)

    # Quality assessor (lenient live feedback)
    min_objects: int = Field(default=1, ge=0)
    max_objects: int = Field(default=10, ge=1)
    min_mean_confidence: float = Field(default=0.25, ge=0.0, le=1.0)
    low_confidence_hint: float = Field(default=0.20, ge=0.0, le=1.0)

    # Capture trigger (strict policy)
    capture_min_objects: int = Field(default=3, ge=1)
    capture_max_objects: int = Field(default=4, ge=1)
    capture_min_confidence: float = Field(default=0.25, ge=0.0, le=1.0)
    ready_confidence_threshold: float = Field(default=0.80, ge=0.0, le=1.0)
    ready_frames_required: int = Field(default=3, ge=1)

    # Sharpness gate
    blur_reject_variance: float = Field(default=20.0, ge=0.0)
    blur_pass_variance: float = Field(default=90.0, gt=0.0)
    tenengrad_expected_max: float = Field(default=2000.0, gt=0.0)
    laplacian_weight: float = Field(default=0.7, ge=0.0, le=1.0)
    combined_accept_threshold: float = Field(default=0.52, ge=0.0, le=1.0)
    required_consecutive_clear: int = Field(default=1, ge=1)
    glare_pixel_threshold: int = Field(default=250, ge=0, le=255)
    glare_reject_ratio: Optional[float] = Field(default=None, ge=0.0, le=1.0, description="Reject stills above this bright-pixel share")
    min_contrast_std: Optional[float] = Field(default=None, ge=0.0, description="Reject stills below this grey-level spread")
    sharpness_max_side: int = Field(default=800, ge=16)

    # Still output
    crop_to_region: bool = Field(default=True, description="Crop accepted stills to the capture region")
    enhance_still: bool = Field(default=False, description="Apply CLAHE and an unsharp mask before saving")
    clahe_clip_limit: float = Field(default=1.2, gt=0.0)
    clahe_tile_size: int = Field(default=8, ge=1)
    unsharp_sigma: float = Field(default=1.0, gt=0.0)
    unsharp_amount: float = Field(default=0.3, ge=0.0)

    # Runtime
    detect_timeout_seconds: float = Field(default=1.0, gt=0.0)
    frame_queue_size: int = Field(default=2, ge=1)
    poll_interval_ms: int = Field(default=150, ge=0, description="Minimum spacing between processed preview frames")
    region_config_path: Path = Field(
        default=Path(__file__).resolve().parent / "capture_region.yaml",
        description="Capture region description.",
    )
    output_dir: Path = Field(
        default=Path(__file__).resolve().parents[2] / "captures",
        description="Directory for accepted stills.",
    )
    jpeg_quality: int = Field(default=95, ge=1, le=100)
    display: bool = Field(default=True, description="Render OpenCV window when true.")
    log_format: str = Field(default="text")

    @field_validator("model_path", "dnn_model_path", "region_config_path", "output_dir", mode="before")
    @classmethod
    def _expand_path(cls, value: Union[str, Path]) -> Path:
        return Path(value).expanduser()

    @field_validator("backend_order")
    @classmethod
    def _normalize_backends(cls, value: List[str]) -> List[str]:
        order = [str(item).strip().lower() for item in value if str(item).strip()]
        unknown = [item for item in order if item not in {"yolo", "dnn"}]
        if unknown:
            raise ValueError(f"Unknown detector backends: {unknown}")
        if not order:
            raise ValueError("backend_order must name at least one backend")
        return order

    @field_validator("log_format")
    @classmethod
    def _check_log_format(cls, value: str) -> str:
        if value not in {"text", "json"}:
            raise ValueError("log_format must be 'text' or 'json'")
        return value

    @model_validator(mode="after")
    def _check_consistency(self) -> "CaptureSettings":
        if self.aspect_min > self.aspect_max:
            raise ValueError("aspect_min must not exceed aspect_max")
        if self.shield_aspect_min > self.shield_aspect_max:
            raise ValueError("shield_aspect_min must not exceed shield_aspect_max")
        if self.min_area_ratio > self.max_area_ratio or self.shield_min_area_ratio > self.max_area_ratio:
            raise ValueError("minimum area ratios must not exceed max_area_ratio")
        if self.min_objects > self.max_objects:
            raise ValueError("min_objects must not exceed max_objects")
        if self.capture_min_objects > self.capture_max_objects:
            raise ValueError("capture_min_objects must not exceed capture_max_objects")
        if self.stability_window_size > self.history_size:
            raise ValueError("stability_window_size must fit inside history_size")
        if self.blur_pass_variance <= self.blur_reject_variance:
            raise ValueError("blur_pass_variance must be greater than blur_reject_variance")
        return self

    @property
    def nms_threshold(self) -> float:
        """Overlap threshold in effect for the configured shield policy."""

        return self.nms_threshold_shielded if self.shield_enabled else self.nms_threshold_default


def load_settings(**overrides: object) -> CaptureSettings:
    """Return capture settings, applying optional overrides."""

    return CaptureSettings(**overrides)
