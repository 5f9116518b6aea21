"""
Application configuration.

Responsibilities:
- Load deployment-specific configuration
- Read environment variables
- Provide a typed, immutable config object

Non-responsibilities:
- No pipeline logic
- No behavioral constants (constants.py owns the defaults)
- No runtime mutation
"""

from __future__ import annotations

import os
from dataclasses import dataclass

from constants import (
    DECODE_REORDER_DEPTH,
    DEFAULT_HARDWARE_ACCELERATION,
    DEFAULT_OUTPUT_CONTENT_TYPE,
    DEFAULT_OUTPUT_EXTENSION,
    DEFAULT_RESOLUTION_LABEL,
    DEFAULT_TARGET_BITRATE,
    DEFAULT_TARGET_CODEC,
    DEFAULT_TARGET_FRAMERATE,
    DEFAULT_TARGET_HEIGHT,
    DEFAULT_TARGET_WIDTH,
    DEFAULT_UPLOAD_URL,
    FRAME_POOL_SIZE,
    PREVIEW_MAX_EDGE_PX,
    SEGMENT_FLUSH_THRESHOLD_BYTES,
    STAGE_QUEUE_MAX_ITEMS,
    UPLOAD_TIMEOUT_S,
)
from media.codec_config import EncoderConfig
from pipeline.runner import PipelineSettings


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError as exc:
        raise ValueError(f"{name} must be an integer, got {raw!r}") from exc


def _env_float(name: str, default: float) -> float:
    raw = os.environ.get(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return float(raw)
    except ValueError as exc:
        raise ValueError(f"{name} must be a number, got {raw!r}") from exc


@dataclass(frozen=True)
class AppConfig:
    """
    Immutable application configuration.

    Constructed once at process startup and passed to the server and CLI,
    which derive per-run EncoderConfig / PipelineSettings from it.
    """

    # ------------------------------------------------------------------
    # Environment
    # ------------------------------------------------------------------

    env: str = "dev"
    log_level: str = "INFO"

    # ------------------------------------------------------------------
    # Upload service
    # ------------------------------------------------------------------

    upload_url: str = DEFAULT_UPLOAD_URL
    upload_timeout_s: float = UPLOAD_TIMEOUT_S

    # ------------------------------------------------------------------
    # Encoding target
    # ------------------------------------------------------------------

    target_codec: str = DEFAULT_TARGET_CODEC
    target_width: int = DEFAULT_TARGET_WIDTH
    target_height: int = DEFAULT_TARGET_HEIGHT
    target_bitrate: int = DEFAULT_TARGET_BITRATE
    target_framerate: int = DEFAULT_TARGET_FRAMERATE
    hardware_acceleration: str = DEFAULT_HARDWARE_ACCELERATION

    # ------------------------------------------------------------------
    # Output naming / segmentation
    # ------------------------------------------------------------------

    resolution_label: str = DEFAULT_RESOLUTION_LABEL
    output_extension: str = DEFAULT_OUTPUT_EXTENSION
    output_content_type: str = DEFAULT_OUTPUT_CONTENT_TYPE
    segment_threshold_bytes: int = SEGMENT_FLUSH_THRESHOLD_BYTES

    # ------------------------------------------------------------------
    # Budgets
    # ------------------------------------------------------------------

    stage_queue_max_items: int = STAGE_QUEUE_MAX_ITEMS
    frame_pool_size: int = FRAME_POOL_SIZE
    preview_max_edge_px: int = PREVIEW_MAX_EDGE_PX

    # ------------------------------------------------------------------
    # Derived per-run values
    # ------------------------------------------------------------------

    def encoder_config(self) -> EncoderConfig:
        return EncoderConfig(
            codec=self.target_codec,
            width=self.target_width,
            height=self.target_height,
            bitrate=self.target_bitrate,
            framerate=self.target_framerate,
            hardware_acceleration=self.hardware_acceleration,
        )

    def pipeline_settings(self) -> PipelineSettings:
        return PipelineSettings(
            resolution_label=self.resolution_label,
            extension=self.output_extension,
            threshold_bytes=self.segment_threshold_bytes,
            queue_max_items=self.stage_queue_max_items,
            frame_pool_size=self.frame_pool_size,
            reorder_depth=DECODE_REORDER_DEPTH,
        )

    # ------------------------------------------------------------------
    # Factory
    # ------------------------------------------------------------------

    @staticmethod
    def load_from_env() -> AppConfig:
        """
        Load configuration from environment variables.

        Unset variables fall back to the defaults in constants.py.

        Raises:
            ValueError if a numeric variable cannot be parsed.
        """
        return AppConfig(
            env=os.environ.get("ENV", "dev"),
            log_level=os.environ.get("LOG_LEVEL", "INFO").upper(),

            upload_url=os.environ.get("UPLOAD_URL", DEFAULT_UPLOAD_URL),
            upload_timeout_s=_env_float("UPLOAD_TIMEOUT_S", UPLOAD_TIMEOUT_S),

            target_codec=os.environ.get("TARGET_CODEC", DEFAULT_TARGET_CODEC),
            target_width=_env_int("TARGET_WIDTH", DEFAULT_TARGET_WIDTH),
            target_height=_env_int("TARGET_HEIGHT", DEFAULT_TARGET_HEIGHT),
            target_bitrate=_env_int("TARGET_BITRATE", DEFAULT_TARGET_BITRATE),
            target_framerate=_env_int("TARGET_FRAMERATE", DEFAULT_TARGET_FRAMERATE),
            hardware_acceleration=os.environ.get(
                "HARDWARE_ACCELERATION", DEFAULT_HARDWARE_ACCELERATION
            ),

            resolution_label=os.environ.get("RESOLUTION_LABEL", DEFAULT_RESOLUTION_LABEL),
            output_extension=os.environ.get("OUTPUT_EXTENSION", DEFAULT_OUTPUT_EXTENSION),
            output_content_type=os.environ.get(
                "OUTPUT_CONTENT_TYPE", DEFAULT_OUTPUT_CONTENT_TYPE
            ),
            segment_threshold_bytes=_env_int(
                "SEGMENT_THRESHOLD_BYTES", SEGMENT_FLUSH_THRESHOLD_BYTES
            ),

            stage_queue_max_items=_env_int("STAGE_QUEUE_MAX_ITEMS", STAGE_QUEUE_MAX_ITEMS),
            frame_pool_size=_env_int("FRAME_POOL_SIZE", FRAME_POOL_SIZE),
            preview_max_edge_px=_env_int("PREVIEW_MAX_EDGE_PX", PREVIEW_MAX_EDGE_PX),
        )
