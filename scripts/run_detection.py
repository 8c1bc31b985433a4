#!/usr/bin/env python3
"""
Run detection post-processing on saved model outputs.

This script performs:
1. Loading a YAML config (labels, thresholds, logging)
2. Loading raw output tensors saved with numpy.save()
3. Decoding + NMS for every frame
4. Printing a per-class summary
5. Writing detections to JSON (optionally scaled to pixels)

Accepted tensor shapes per file: (1, C, N), (C, N) or a batch (B, C, N),
where C == 4 + number of labels.

Usage:
    python scripts/run_detection.py outputs/frame_0001.npy
    python scripts/run_detection.py outputs/*.npy --config configs/default.yaml
    python scripts/run_detection.py out.npy --conf 0.5 --iou 0.4 --image-size 1280 720
    python scripts/run_detection.py out.npy --set postprocess.class_agnostic=false
    python scripts/run_detection.py out.npy --sort-by area
"""

import argparse
import json
import sys
import time
from collections import defaultdict
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import numpy as np

# Add project root to path
PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from src.detection import (
    SORT_KEYS,
    BoundingBox,
    DetectionPostProcessor,
    PostprocessError,
    sort_detections,
)
from src.utils.config_loader import get_nested, load_config, parse_overrides
from src.utils.logger import ProgressLogger, setup_logger


def load_frames(tensor_path: Path) -> List[np.ndarray]:
    """
    Load a saved output tensor and split it into single frames.

    Returns:
        List of (1, C, N) or (C, N) arrays.
    """
    tensor = np.load(tensor_path)

    if tensor.ndim == 3 and tensor.shape[0] > 1:
        return [frame for frame in tensor]

    return [tensor]


def detections_to_json(
    detections: List[BoundingBox],
    image_size: Optional[Tuple[int, int]] = None,
) -> List[Dict[str, Any]]:
    """Serialize detections, adding pixel boxes when an image size is known."""
    records = []

    for det in detections:
        record = det.to_dict()
        if image_size is not None:
            record["bbox_pixels"] = list(det.to_pixels(*image_size))
        records.append(record)

    return records


def run_detection(
    tensor_paths: List[Path],
    processor: DetectionPostProcessor,
    logger,
    image_size: Optional[Tuple[int, int]] = None,
    sort_by: str = "confidence",
) -> Dict[str, Any]:
    """
    Post-process every frame of every tensor file.

    Args:
        tensor_paths: .npy files to process.
        processor: Configured post-processor.
        logger: Logger for progress and per-file summaries.
        image_size: Optional (width, height) for pixel boxes.
        sort_by: Attribute to order each frame's detections by (descending).

    Returns:
        Dictionary with per-frame results and statistics.
    """
    results = []
    class_counts: Dict[str, int] = defaultdict(int)
    total_time = 0.0

    with ProgressLogger(len(tensor_paths), logger, description="Post-processing") as progress:
        for tensor_path in tensor_paths:
            frames = load_frames(tensor_path)

            for frame_idx, frame in enumerate(frames):
                start = time.perf_counter()
                detections = processor.process(frame)
                total_time += time.perf_counter() - start

                detections = sort_detections(detections, key=sort_by)

                for det in detections:
                    class_counts[det.class_name] += 1

                logger.debug(f"{tensor_path.name}[{frame_idx}]: {detections}")
                results.append({
                    "file": str(tensor_path),
                    "frame": frame_idx,
                    "detections": detections_to_json(detections, image_size),
                })

            progress.update()

    total_detections = sum(class_counts.values())
    return {
        "labels": list(processor.labels),
        "confidence_threshold": processor.config.confidence_threshold,
        "iou_threshold": processor.config.iou_threshold,
        "total_frames": len(results),
        "total_detections": total_detections,
        "class_counts": dict(class_counts),
        "avg_time_ms": 1000.0 * total_time / len(results) if results else 0.0,
        "frames": results,
    }


def print_statistics(stats: Dict[str, Any]) -> None:
    """Print a summary of the run."""
    print("\n" + "=" * 60)
    print("DETECTION SUMMARY")
    print("=" * 60)
    print(f"Frames processed:   {stats['total_frames']}")
    print(f"Total detections:   {stats['total_detections']}")
    print(f"Avg post-process:   {stats['avg_time_ms']:.2f} ms/frame")
    print(f"Confidence > {stats['confidence_threshold']}, NMS IoU > {stats['iou_threshold']}")

    if stats["class_counts"]:
        print("\nDetections by class:")
        for class_name, count in sorted(stats["class_counts"].items(), key=lambda kv: -kv[1]):
            print(f"  {class_name:<20} {count}")
    print("=" * 60)


def main():
    parser = argparse.ArgumentParser(
        description="Decode and suppress detector output tensors",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument(
        "tensors",
        nargs="+",
        type=Path,
        help="Output tensors saved as .npy",
    )
    parser.add_argument(
        "--config",
        type=str,
        default=str(PROJECT_ROOT / "configs" / "default.yaml"),
        help="YAML config with labels and thresholds",
    )
    parser.add_argument(
        "--conf",
        type=float,
        default=None,
        help="Override confidence threshold",
    )
    parser.add_argument(
        "--iou",
        type=float,
        default=None,
        help="Override NMS IoU threshold",
    )
    parser.add_argument(
        "--per-class",
        action="store_true",
        help="Run NMS separately for each class",
    )
    parser.add_argument(
        "--max-det",
        type=int,
        default=None,
        help="Keep at most this many detections per frame",
    )
    parser.add_argument(
        "--set",
        dest="overrides",
        action="append",
        default=[],
        metavar="KEY=VALUE",
        help="Override any config value, e.g. postprocess.iou_threshold=0.4",
    )
    parser.add_argument(
        "--image-size",
        type=int,
        nargs=2,
        default=None,
        metavar=("WIDTH", "HEIGHT"),
        help="Also report boxes in pixels of an image this size",
    )
    parser.add_argument(
        "--sort-by",
        choices=SORT_KEYS,
        default="confidence",
        help="Order each frame's detections by this attribute, largest first",
    )
    parser.add_argument(
        "--output",
        type=Path,
        default=None,
        help="Write detections to this JSON file",
    )
    parser.add_argument(
        "--log-level",
        type=str,
        default=None,
        help="Logging level (DEBUG, INFO, WARNING, ERROR)",
    )

    args = parser.parse_args()

    overrides = parse_overrides(args.overrides)
    if args.conf is not None:
        overrides.setdefault("postprocess", {})["confidence_threshold"] = args.conf
    if args.iou is not None:
        overrides.setdefault("postprocess", {})["iou_threshold"] = args.iou
    if args.per_class:
        overrides.setdefault("postprocess", {})["class_agnostic"] = False
    if args.max_det is not None:
        overrides.setdefault("postprocess", {})["max_detections"] = args.max_det
    if args.log_level is not None:
        overrides.setdefault("logging", {})["level"] = args.log_level

    config = load_config(args.config, overrides)

    logger = setup_logger(
        level=get_nested(config, "logging.level", "INFO"),
        log_file=get_nested(config, "logging.log_file"),
    )

    missing = [p for p in args.tensors if not p.exists()]
    if missing:
        logger.error(f"Tensor file(s) not found: {', '.join(str(p) for p in missing)}")
        return 1

    try:
        processor = DetectionPostProcessor.from_config(config)
        logger.info(f"Using {processor}")

        image_size = tuple(args.image_size) if args.image_size else None
        stats = run_detection(args.tensors, processor, logger, image_size, args.sort_by)
    except PostprocessError as e:
        logger.error(f"Tensor does not match the configured labels: {e}")
        return 1
    except ValueError as e:
        logger.error(f"Invalid configuration: {e}")
        return 1

    print_statistics(stats)

    if args.output is not None:
        args.output.parent.mkdir(parents=True, exist_ok=True)
        with open(args.output, "w") as f:
            json.dump(stats, f, indent=2)
        print(f"\nDetections saved to: {args.output}")

    return 0


if __name__ == "__main__":
    sys.exit(main())
