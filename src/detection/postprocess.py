"""
Post-processing for decoded detections.

This module provides IoU, Non-Maximum Suppression, filters and the
DetectionPostProcessor that chains decoding and suppression.

Non-Maximum Suppression (NMS):
==============================
NMS removes redundant overlapping detections. The algorithm:

1. Sort detections by confidence score (descending, stable)
2. Select the highest-scoring detection not yet suppressed, add to output
3. Mark every later detection with IoU > threshold as suppressed
4. Repeat until every detection is either kept or suppressed

Suppression is class-agnostic by default: overlapping boxes of different
classes suppress each other.

IoU (Intersection over Union):
==============================
           area of overlap
IoU = --------------------------
           area of union

       intersection(A, B)
    = ---------------------
      area(A) + area(B) - intersection(A, B)

area(A) is A.w * A.h. IoU ranges from 0 (no overlap) to 1 (perfect
overlap). A zero union (two empty boxes) gives 0.
"""

import numbers
from dataclasses import dataclass, fields
from operator import attrgetter
from typing import Any, Dict, List, Optional, Sequence, Tuple

import numpy as np

from ..utils.logger import LoggerMixin
from .boxes import BoundingBox
from .decoder import DEFAULT_CONFIDENCE_THRESHOLD, decode, decode_batch, infer_layout

DEFAULT_IOU_THRESHOLD = 0.5


def _check_max_detections(max_detections: Optional[int]) -> None:
    if max_detections is None:
        return
    if isinstance(max_detections, bool) or not isinstance(max_detections, numbers.Integral):
        raise ValueError(f"max_detections must be an int or None, got {max_detections!r}")
    if max_detections <= 0:
        raise ValueError(f"max_detections must be positive or None, got {max_detections}")


def compute_iou(box1: BoundingBox, box2: BoundingBox) -> float:
    """
    Compute Intersection over Union (IoU) between two boxes.

    Args:
        box1: First box.
        box2: Second box.

    Returns:
        IoU value in range [0, 1]. 0.0 when the union is empty.

    Example:
        >>> iou = compute_iou(boxes[0], boxes[1])
        >>> print(f"IoU: {iou:.2f}")
    """
    # Compute intersection coordinates
    x1 = max(box1.x1, box2.x1)
    y1 = max(box1.y1, box2.y1)
    x2 = min(box1.x2, box2.x2)
    y2 = min(box1.y2, box2.y2)

    # Compute intersection area (0 if boxes don't overlap)
    intersection = max(0.0, x2 - x1) * max(0.0, y2 - y1)

    union = box1.area + box2.area - intersection

    return intersection / union if union > 0 else 0.0


def _box_arrays(boxes: Sequence[BoundingBox]) -> Tuple[np.ndarray, np.ndarray]:
    """(N, 4) xyxy corners and (N,) w * h areas."""
    if len(boxes) == 0:
        return np.zeros((0, 4), dtype=np.float64), np.zeros((0,), dtype=np.float64)

    xyxy = np.array([box.xyxy for box in boxes], dtype=np.float64)
    areas = np.array([box.area for box in boxes], dtype=np.float64)
    return xyxy, areas


def _safe_divide(intersection: np.ndarray, union: np.ndarray) -> np.ndarray:
    return np.divide(
        intersection,
        union,
        out=np.zeros_like(intersection, dtype=np.float64),
        where=union > 0,
    )


def compute_iou_matrix(
    boxes1: Sequence[BoundingBox],
    boxes2: Sequence[BoundingBox],
) -> np.ndarray:
    """
    Compute IoU between all pairs of boxes (vectorized).

    Args:
        boxes1: N boxes.
        boxes2: M boxes.

    Returns:
        (N, M) array of IoU values.
    """
    xyxy1, areas1 = _box_arrays(boxes1)
    xyxy2, areas2 = _box_arrays(boxes2)

    # (N, 1, 4) against (1, M, 4)
    a = xyxy1[:, np.newaxis, :]
    b = xyxy2[np.newaxis, :, :]

    x1 = np.maximum(a[..., 0], b[..., 0])
    y1 = np.maximum(a[..., 1], b[..., 1])
    x2 = np.minimum(a[..., 2], b[..., 2])
    y2 = np.minimum(a[..., 3], b[..., 3])

    intersection = np.maximum(0.0, x2 - x1) * np.maximum(0.0, y2 - y1)
    union = areas1[:, np.newaxis] + areas2[np.newaxis, :] - intersection

    return _safe_divide(intersection, union)


def apply_nms(
    detections: List[BoundingBox],
    iou_threshold: float = DEFAULT_IOU_THRESHOLD,
    class_agnostic: bool = True,
    max_detections: Optional[int] = None,
) -> List[BoundingBox]:
    """
    Apply Non-Maximum Suppression to detections.

    NMS removes redundant overlapping detections, keeping only the highest
    confidence detection among overlapping boxes.

    Args:
        detections: Candidate boxes, usually straight from decode().
        iou_threshold: IoU strictly above this suppresses the lower box.
            - 0.5: Standard threshold (boxes with >50% overlap are suppressed)
            - Lower: More aggressive suppression
            - Higher: Less suppression, may keep more overlapping boxes
        class_agnostic: If True (default), boxes of different classes
            suppress each other. If False, apply NMS separately per class.
        max_detections: Keep at most this many boxes (None = no limit).

    Returns:
        Surviving boxes, highest confidence first. Equal confidences keep
        their input order.

    Raises:
        ValueError: max_detections is not a positive int.
    """
    _check_max_detections(max_detections)

    if len(detections) == 0:
        return []

    boxes, areas = _box_arrays(detections)
    scores = np.array([det.confidence for det in detections], dtype=np.float64)

    if class_agnostic:
        keep_indices = _nms_numpy(boxes, areas, scores, iou_threshold, max_detections)
    else:
        classes = np.array([det.class_index for det in detections])
        keep_indices = []
        for class_index in np.unique(classes):
            class_indices = np.where(classes == class_index)[0]

            class_keep = _nms_numpy(
                boxes[class_indices],
                areas[class_indices],
                scores[class_indices],
                iou_threshold,
                max_detections,
            )
            keep_indices.extend(int(class_indices[k]) for k in class_keep)

        # Merge classes back into one confidence-descending list
        keep_indices.sort(key=lambda i: (-scores[i], i))
        if max_detections is not None:
            keep_indices = keep_indices[:max_detections]

    return [detections[i] for i in keep_indices]


def _nms_numpy(
    boxes: np.ndarray,
    areas: np.ndarray,
    scores: np.ndarray,
    threshold: float,
    max_detections: Optional[int] = None,
) -> List[int]:
    """
    Greedy NMS over index arrays.

    The sorted pool is never mutated; a boolean marker per position records
    which boxes have been suppressed.

    Args:
        boxes: (N, 4) array of boxes [x1, y1, x2, y2].
        areas: (N,) array of box areas.
        scores: (N,) array of confidence scores.
        threshold: IoU threshold for suppression.
        max_detections: Stop after keeping this many boxes.

    Returns:
        Indices into the inputs, in keep order.
    """
    if len(boxes) == 0:
        return []

    # Stable sort keeps input order for equal scores
    order = np.argsort(-scores, kind="stable")

    x1 = boxes[order, 0]
    y1 = boxes[order, 1]
    x2 = boxes[order, 2]
    y2 = boxes[order, 3]
    sorted_areas = areas[order]

    suppressed = np.zeros(len(order), dtype=bool)
    keep = []

    for i in range(len(order)):
        if suppressed[i]:
            continue

        keep.append(int(order[i]))
        if max_detections is not None and len(keep) >= max_detections:
            break

        # IoU against every later box
        xx1 = np.maximum(x1[i], x1[i + 1:])
        yy1 = np.maximum(y1[i], y1[i + 1:])
        xx2 = np.minimum(x2[i], x2[i + 1:])
        yy2 = np.minimum(y2[i], y2[i + 1:])

        intersection = np.maximum(0.0, xx2 - xx1) * np.maximum(0.0, yy2 - yy1)
        union = sorted_areas[i] + sorted_areas[i + 1:] - intersection
        iou = _safe_divide(intersection, union)

        suppressed[i + 1:] |= iou > threshold

    return keep


def filter_by_class(
    detections: List[BoundingBox],
    allowed_classes: Sequence[str],
) -> List[BoundingBox]:
    """
    Filter detections to keep only specified classes.

    Example:
        >>> filtered = filter_by_class(detections, ["person", "car"])
    """
    return [det for det in detections if det.class_name in allowed_classes]


SORT_KEYS = ("confidence", "area", "x1", "y1", "class_index")


def sort_detections(
    detections: List[BoundingBox],
    key: str = "confidence",
    reverse: bool = True,
) -> List[BoundingBox]:
    """
    Order detections by one BoundingBox attribute (see SORT_KEYS).

    The sort is stable, so boxes with equal keys keep their current order.
    """
    if key not in SORT_KEYS:
        raise ValueError(f"Unknown sort key: {key}. Valid: {list(SORT_KEYS)}")

    return sorted(detections, key=attrgetter(key), reverse=reverse)


@dataclass(frozen=True)
class PostprocessConfig:
    """Thresholds and switches for DetectionPostProcessor."""

    confidence_threshold: float = DEFAULT_CONFIDENCE_THRESHOLD
    iou_threshold: float = DEFAULT_IOU_THRESHOLD
    class_agnostic: bool = True
    max_detections: Optional[int] = None
    allowed_classes: Optional[Tuple[str, ...]] = None

    def __post_init__(self):
        for name in ("confidence_threshold", "iou_threshold"):
            value = getattr(self, name)
            if isinstance(value, bool) or not isinstance(value, numbers.Real):
                raise ValueError(f"{name} must be a number, got {value!r}")
            if not 0.0 <= value <= 1.0:
                raise ValueError(f"{name} must be in [0, 1], got {value}")

        _check_max_detections(self.max_detections)

        if self.allowed_classes is not None:
            if not isinstance(self.allowed_classes, (list, tuple)) or not all(
                isinstance(name, str) for name in self.allowed_classes
            ):
                raise ValueError(
                    f"allowed_classes must be a list of class names, got {self.allowed_classes!r}"
                )
            object.__setattr__(self, "allowed_classes", tuple(self.allowed_classes))

    @classmethod
    def from_dict(cls, config: Optional[Dict[str, Any]]) -> "PostprocessConfig":
        """
        Build from the `postprocess` section of a YAML config.

        Raises:
            ValueError: Unknown keys or out-of-range values.
        """
        config = dict(config or {})
        known = {f.name for f in fields(cls)}
        unknown = set(config) - known
        if unknown:
            raise ValueError(f"Unknown postprocess options: {sorted(unknown)}. Valid: {sorted(known)}")
        return cls(**config)


class DetectionPostProcessor(LoggerMixin):
    """
    Decode + suppress pipeline for one model's output tensors.

    Holds the label list and thresholds; every call is independent, so one
    instance can be shared between threads.

    Usage:
        processor = DetectionPostProcessor(
            labels=["person", "car"],
            confidence_threshold=0.3,
            iou_threshold=0.5,
        )
        detections = processor.process(output)  # output shaped (1, 6, 8400)
        for det in detections:
            print(det.class_name, det.to_pixels(image_w, image_h))
    """

    def __init__(
        self,
        labels: Sequence[str],
        confidence_threshold: float = DEFAULT_CONFIDENCE_THRESHOLD,
        iou_threshold: float = DEFAULT_IOU_THRESHOLD,
        class_agnostic: bool = True,
        max_detections: Optional[int] = None,
        allowed_classes: Optional[Sequence[str]] = None,
    ):
        """
        Initialize post-processor.

        Args:
            labels: Ordered class names, one per class channel.
            confidence_threshold: Minimum (exclusive) class score.
            iou_threshold: IoU threshold for NMS.
            class_agnostic: Apply NMS across all classes.
            max_detections: Cap on returned boxes (None = no limit).
            allowed_classes: Classes to keep (None = all classes).
        """
        self.labels = tuple(labels)
        self.config = PostprocessConfig(
            confidence_threshold=confidence_threshold,
            iou_threshold=iou_threshold,
            class_agnostic=class_agnostic,
            max_detections=max_detections,
            allowed_classes=allowed_classes,
        )

    @classmethod
    def from_config(cls, config: Dict[str, Any]) -> "DetectionPostProcessor":
        """
        Build from a loaded configuration dictionary.

        Expects a top-level `labels` list and an optional `postprocess`
        section (see configs/default.yaml).
        """
        labels = config.get("labels")
        if not labels:
            raise ValueError("Config must define a non-empty 'labels' list")

        settings = PostprocessConfig.from_dict(config.get("postprocess"))
        return cls(
            labels=labels,
            confidence_threshold=settings.confidence_threshold,
            iou_threshold=settings.iou_threshold,
            class_agnostic=settings.class_agnostic,
            max_detections=settings.max_detections,
            allowed_classes=settings.allowed_classes,
        )

    @property
    def num_channel(self) -> int:
        """Channels a matching tensor must have."""
        return len(self.labels) + 4

    def process(
        self,
        tensor: np.ndarray,
        num_channel: Optional[int] = None,
        num_elements: Optional[int] = None,
    ) -> List[BoundingBox]:
        """
        Decode one output tensor and suppress overlapping boxes.

        Processing order:
        1. Decode (confidence threshold, frame bounds)
        2. Filter by class
        3. Apply NMS

        Args:
            tensor: Model output, (1, C, N), (C, N) or flat.
            num_channel: Required for flat input, otherwise read from the shape.
            num_elements: Required for flat input, otherwise read from the shape.

        Returns:
            Final detections, highest confidence first.
        """
        if num_channel is None or num_elements is None:
            inferred_channel, inferred_elements = infer_layout(np.shape(tensor))
            num_channel = inferred_channel if num_channel is None else num_channel
            num_elements = inferred_elements if num_elements is None else num_elements

        candidates = decode(
            tensor,
            num_channel,
            num_elements,
            self.labels,
            self.config.confidence_threshold,
        )
        return self._suppress(candidates)

    def process_batch(self, tensor: np.ndarray) -> List[List[BoundingBox]]:
        """Run process() on every frame of a (B, C, N) batch."""
        batch = decode_batch(tensor, self.labels, self.config.confidence_threshold)
        return [self._suppress(candidates) for candidates in batch]

    def _suppress(self, candidates: List[BoundingBox]) -> List[BoundingBox]:
        if len(candidates) == 0:
            return []

        detections = candidates
        if self.config.allowed_classes is not None:
            detections = filter_by_class(detections, self.config.allowed_classes)

        detections = apply_nms(
            detections,
            iou_threshold=self.config.iou_threshold,
            class_agnostic=self.config.class_agnostic,
            max_detections=self.config.max_detections,
        )

        self.logger.debug(
            f"{len(candidates)} candidates -> {len(detections)} detections "
            f"(iou>{self.config.iou_threshold})"
        )
        return detections

    def __repr__(self) -> str:
        return (
            f"DetectionPostProcessor("
            f"classes={len(self.labels)}, "
            f"conf>{self.config.confidence_threshold}, "
            f"nms={self.config.iou_threshold})"
        )
