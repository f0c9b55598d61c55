#!/usr/bin/env python3
from __future__ import annotations

import argparse
import json
import sys
import time
from io import BytesIO
from pathlib import Path

from PIL import Image

from optimizer.config import SUPPORTED_FORMATS, load_settings, merge_settings
from optimizer.errors import OptimizerError
from optimizer.pipeline.runner import ImagePipeline
from optimizer.services.loader import ImageLoader


def synthetic_image(width: int, height: int) -> Image.Image:
    """Linear and radial gradients merged into one RGB image."""
    horizontal = Image.linear_gradient("L").rotate(90).resize((width, height))
    vertical = Image.linear_gradient("L").resize((width, height))
    radial = Image.radial_gradient("L").resize((width, height))
    return Image.merge("RGB", (horizontal, vertical, radial))


def main() -> int:
    parser = argparse.ArgumentParser(description="Smoke test for the image optimizer engine")
    parser.add_argument("--input", type=str, default="", help="Image file; a synthetic one is used if omitted")
    parser.add_argument("--runs", type=int, default=5, help="Number of repeated runs")
    parser.add_argument("--width", type=int, default=1600, help="Synthetic image width")
    parser.add_argument("--height", type=int, default=900, help="Synthetic image height")
    parser.add_argument("--max-width", type=int, default=800)
    parser.add_argument("--compression", choices=["lossless", "lossy", "glossy"], default="glossy")
    parser.add_argument("--format", choices=sorted(SUPPORTED_FORMATS), default="webp")
    parser.add_argument(
        "--pipeline",
        type=str,
        default="",
        help="JSON list of steps; runs the step pipeline instead of the single-shot optimizer",
    )
    parser.add_argument("--save", type=str, default="", help="Optional path for the last output image")
    args = parser.parse_args()

    settings = merge_settings(
        load_settings(),
        {"image": {"default_format": args.format, "default_compression": args.compression}},
    )
    image_config = settings.image
    loader = ImageLoader(image_config)
    pipeline = ImagePipeline(image_config)

    if args.input:
        asset = loader.load_from_file(args.input)
    else:
        buffer = BytesIO()
        synthetic_image(args.width, args.height).save(buffer, format="PNG")
        asset = loader.load_from_bytes(buffer.getvalue())
    print(f"input: {asset.source_format} {asset.width}x{asset.height} {asset.byte_size} bytes")

    steps = json.loads(args.pipeline) if args.pipeline else None
    # format and compression come from the merged defaults
    options = {"maxWidth": args.max_width}

    last = None
    total_ms = 0.0
    for index in range(args.runs):
        start = time.perf_counter()
        try:
            result = pipeline.run(asset, steps) if steps is not None else pipeline.process(asset, options)
        except OptimizerError as error:
            print(f"ERROR: {error.code}: {error.message}", file=sys.stderr)
            return 1
        elapsed_ms = (time.perf_counter() - start) * 1000.0
        total_ms += elapsed_ms

        print(
            f"run={index + 1}/{args.runs} format={result.format} size={result.width}x{result.height} "
            f"bytes={result.processed_size} ratio={result.compression_ratio} latency_ms={elapsed_ms:.2f}"
        )
        last = result

    print(f"average latency per run: {total_ms / max(1, args.runs):.2f} ms")

    if args.save and last is not None:
        output_path = Path(args.save).expanduser().resolve()
        output_path.parent.mkdir(parents=True, exist_ok=True)
        output_path.write_bytes(last.encoded_bytes)
        print(f"saved output: {output_path}")

    return 0


if __name__ == "__main__":
    raise SystemExit(main())
