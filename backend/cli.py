"""
Command-line entry point: transcode one local file.

    python -m cli clip.mp4 --output-dir out/
    python -m cli clip.mp4 --upload-url http://localhost:3000

Runs one pipeline without preview rendering (preview frames are decoded and
released) and prints the PipelineResult, or the error payload, as JSON.
Exit status: 0 on success, 1 on a pipeline failure.
"""

from __future__ import annotations

import argparse
import asyncio
import json
import sys
from dataclasses import replace
from pathlib import Path
from typing import Any, Optional, Sequence

from dotenv import load_dotenv

from config import AppConfig
from media.errors import PipelineError
from observability import logger
from pipeline.runner import TranscodePipeline
from services.collaborators import build_collaborators, build_uploader


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="cli",
        description="Transcode a video into segmented WebM uploads.",
    )
    parser.add_argument("input", type=Path, help="input video file")

    target = parser.add_mutually_exclusive_group()
    target.add_argument("--output-dir", type=Path, help="write segments to this directory")
    target.add_argument("--upload-url", help="POST segments to this upload service URL")

    parser.add_argument("--label", help="resolution label used in segment names")
    parser.add_argument("--width", type=int)
    parser.add_argument("--height", type=int)
    parser.add_argument("--bitrate", type=int)
    parser.add_argument("--codec", help="codec string, e.g. vp09.00.10.08")
    parser.add_argument("--log-level", help="DEBUG, INFO, WARNING or ERROR")
    return parser


def config_from_args(base: AppConfig, args: argparse.Namespace) -> AppConfig:
    """Apply command-line overrides on top of the environment configuration."""
    overrides: dict[str, Any] = {}
    if args.upload_url:
        overrides["upload_url"] = args.upload_url
    if args.label:
        overrides["resolution_label"] = args.label
    if args.width:
        overrides["target_width"] = args.width
    if args.height:
        overrides["target_height"] = args.height
    if args.bitrate:
        overrides["target_bitrate"] = args.bitrate
    if args.codec:
        overrides["target_codec"] = args.codec
    if args.log_level:
        overrides["log_level"] = args.log_level.upper()
    return replace(base, **overrides)


async def transcode_file(
    config: AppConfig,
    input_path: Path,
    *,
    output_dir: Optional[Path] = None,
) -> dict[str, Any]:
    uploader = build_uploader(config, output_dir=output_dir)
    collaborators = build_collaborators(config, uploader=uploader)
    pipeline = TranscodePipeline(
        source=input_path,
        encoder_config=config.encoder_config(),
        collaborators=collaborators,
        settings=config.pipeline_settings(),
    )
    try:
        result = await pipeline.run()
    finally:
        await uploader.aclose()
    return result.to_payload()


def main(argv: Optional[Sequence[str]] = None) -> int:
    load_dotenv()
    args = build_parser().parse_args(argv)
    config = config_from_args(AppConfig.load_from_env(), args)
    logger.configure(level=config.log_level)

    try:
        payload = asyncio.run(
            transcode_file(config, args.input, output_dir=args.output_dir)
        )
    except PipelineError as exc:
        print(json.dumps({"status": "error", **exc.to_payload()}), file=sys.stderr)
        return 1

    print(json.dumps(payload, indent=2))
    return 0


if __name__ == "__main__":
    sys.exit(main())
