"""
BEHAVIOR-AS-CONSTANTS
---------------------
Single source of truth for all behavioral invariants of the transcoder.

Rules:
- If changing a value changes pipeline behavior, it belongs here.
- No magic numbers elsewhere in the codebase.
- Other modules MUST import from this file.
"""

from __future__ import annotations

from typing import Final

# =============================================================================
# Target encoding (QVGA VP9 WebM)
# =============================================================================

DEFAULT_TARGET_CODEC: Final[str] = "vp09.00.10.08"
DEFAULT_TARGET_WIDTH: Final[int] = 320
DEFAULT_TARGET_HEIGHT: Final[int] = 240
DEFAULT_TARGET_BITRATE: Final[int] = 10_000_000
DEFAULT_TARGET_FRAMERATE: Final[int] = 30
DEFAULT_HARDWARE_ACCELERATION: Final[str] = "prefer-software"

# Timestamps on chunks and frames are microseconds (WebCodecs convention)
TIMESTAMP_UNITS_PER_SECOND: Final[int] = 1_000_000

# =============================================================================
# Output naming
# =============================================================================

DEFAULT_RESOLUTION_LABEL: Final[str] = "144p"
DEFAULT_OUTPUT_EXTENSION: Final[str] = "webm"
DEFAULT_OUTPUT_CONTENT_TYPE: Final[str] = "video/webm"
DEFAULT_BASE_NAME: Final[str] = "video"

# =============================================================================
# Segmented upload
# =============================================================================

# Flush fires when accumulated bytes strictly exceed this value
SEGMENT_FLUSH_THRESHOLD_BYTES: Final[int] = 10_000_000

SEGMENT_SEQ_START: Final[int] = 1
SEGMENT_SEQ_MAX: Final[int] = 2**32 - 1  # u32

DEFAULT_UPLOAD_URL: Final[str] = "http://localhost:3000"
UPLOAD_TIMEOUT_S: Final[float] = 60.0

# =============================================================================
# Backpressure / resource budgets
# =============================================================================

# Items buffered between two adjacent stages before the producer suspends
STAGE_QUEUE_MAX_ITEMS: Final[int] = 8

# Decoded frames that may be outstanding (unreleased) per decoder
FRAME_POOL_SIZE: Final[int] = 16

# Frames held back by the decode stage to restore presentation order
DECODE_REORDER_DEPTH: Final[int] = 4

# =============================================================================
# Stage names (error + log tagging)
# =============================================================================

STAGE_DEMUX: Final[str] = "demux"
STAGE_DECODE: Final[str] = "decode"
STAGE_ENCODE: Final[str] = "encode"
STAGE_PREVIEW: Final[str] = "preview"
STAGE_MUX: Final[str] = "mux"
STAGE_UPLOAD: Final[str] = "upload"
STAGE_PIPELINE: Final[str] = "pipeline"

# =============================================================================
# Preview transport (server → client binary frames)
# =============================================================================
# 4B seq_num (u32) + 8B timestamp_us (u64) + 2B width (u16) + 2B height (u16)
PREVIEW_HEADER_BYTES: Final[int] = 4 + 8 + 2 + 2
PREVIEW_CHANNELS: Final[int] = 3  # RGB24
PREVIEW_SEQ_START: Final[int] = 1
PREVIEW_SEQ_MAX: Final[int] = 2**32 - 1
PREVIEW_DIMENSION_MAX: Final[int] = 2**16 - 1

# Max edge length of a preview frame sent over the websocket
PREVIEW_MAX_EDGE_PX: Final[int] = 320

# =============================================================================
# Server
# =============================================================================

WS_UPLOAD_MAX_BYTES: Final[int] = 4 * 1024**3
SPOOL_MAX_MEMORY_BYTES: Final[int] = 64 * 1024**2
