"""
Default collaborator wiring.

Builds the PyAV + httpx / directory implementations behind the pipeline's
collaborator interfaces. The server and CLI call this once per run; tests
replace it with fakes.
"""

from __future__ import annotations

from pathlib import Path
from typing import Callable, Optional

from adapters.codec.pyav_codec import (
    pyav_decoder_factory,
    pyav_encoder_factory,
    pyav_preview_decoder_factory,
)
from adapters.demux.pyav_demuxer import PyAVDemuxer
from adapters.mux.pyav_webm import pyav_webm_muxer_factory
from adapters.upload.base import SegmentUploader
from adapters.upload.directory_uploader import DirectorySegmentUploader
from adapters.upload.http_uploader import HttpSegmentUploader
from config import AppConfig
from pipeline.runner import PipelineCollaborators

CollaboratorsFactory = Callable[[], PipelineCollaborators]


def build_uploader(
    config: AppConfig,
    *,
    output_dir: Optional[str | Path] = None,
) -> SegmentUploader:
    """Directory uploader when output_dir is given, HTTP uploader otherwise."""
    if output_dir is not None:
        return DirectorySegmentUploader(output_dir)
    return HttpSegmentUploader(
        url=config.upload_url,
        content_type=config.output_content_type,
        timeout_s=config.upload_timeout_s,
    )


def build_collaborators(
    config: AppConfig,
    *,
    uploader: Optional[SegmentUploader] = None,
) -> PipelineCollaborators:
    return PipelineCollaborators(
        demuxer=PyAVDemuxer(),
        decoder_factory=pyav_decoder_factory,
        encoder_factory=pyav_encoder_factory,
        preview_decoder_factory=pyav_preview_decoder_factory(config.preview_max_edge_px),
        muxer_factory=pyav_webm_muxer_factory,
        uploader=uploader or build_uploader(config),
    )


def default_collaborators_factory(config: AppConfig) -> CollaboratorsFactory:
    def factory() -> PipelineCollaborators:
        return build_collaborators(config)

    return factory
