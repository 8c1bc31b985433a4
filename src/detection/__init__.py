"""
Detection post-processing for single-shot detector outputs.

This module turns a raw (1, 4 + num_classes, num_cells) prediction tensor
into a clean, non-overlapping list of labelled boxes.

Classes:
    BoundingBox: Immutable decoded detection (normalized coordinates)
    DetectionPostProcessor: Decode + NMS pipeline
    PostprocessConfig: Validated thresholds

Functions:
    decode: Tensor -> candidate boxes
    apply_nms: Non-Maximum Suppression
    compute_iou: Calculate IoU between boxes

Example:
    >>> from src.detection import DetectionPostProcessor
    >>>
    >>> processor = DetectionPostProcessor(labels=["person", "car"])
    >>> detections = processor.process(output)
"""

from .boxes import BoundingBox, scale_boxes
from .decoder import (
    decode,
    decode_batch,
    infer_layout,
    validate_layout,
)
from .exceptions import (
    LabelCountMismatch,
    PostprocessError,
    TensorShapeMismatch,
)
from .postprocess import (
    SORT_KEYS,
    DetectionPostProcessor,
    PostprocessConfig,
    apply_nms,
    compute_iou,
    compute_iou_matrix,
    filter_by_class,
    sort_detections,
)

__all__ = [
    # Types
    "BoundingBox",
    "scale_boxes",
    # Errors
    "PostprocessError",
    "TensorShapeMismatch",
    "LabelCountMismatch",
    # Decoder
    "decode",
    "decode_batch",
    "infer_layout",
    "validate_layout",
    # Post-processing
    "DetectionPostProcessor",
    "PostprocessConfig",
    "SORT_KEYS",
    "apply_nms",
    "compute_iou",
    "compute_iou_matrix",
    "filter_by_class",
    "sort_detections",
]
