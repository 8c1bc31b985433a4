"""
Decoder for single-shot detector output tensors.

Tensor Layout:
==============
The model emits one float32 tensor shaped (1, C, N), channel-major:

    value(channel, element) = flat[element + N * channel]

  channel 0..3   -> cx, cy, w, h  (normalized to the model's input frame)
  channel 4..C-1 -> one confidence score per class (C - 4 == len(labels))

N is the number of candidate cells (grid positions / anchors), e.g. 8400
for a 640x640 YOLOv8 export.

Decoding, per cell:
===================
1. Pick the best class score (first maximum wins on ties)
2. Keep the cell only if that score is strictly above the threshold
3. Convert (cx, cy, w, h) -> (x1, y1, x2, y2)
4. Drop boxes with a negative width or height, or that leave the [0, 1]
   frame (no clamping)
"""

import logging
from typing import List, Optional, Sequence, Tuple

import numpy as np

from .boxes import BoundingBox
from .exceptions import LabelCountMismatch, TensorShapeMismatch

logger = logging.getLogger(__name__)

# cx, cy, w, h
NUM_BOX_CHANNELS = 4

DEFAULT_CONFIDENCE_THRESHOLD = 0.3


def infer_layout(shape: Sequence[int]) -> Tuple[int, int]:
    """
    Read (num_channel, num_elements) from a model output shape.

    Args:
        shape: (1, C, N) or (C, N).

    Returns:
        (num_channel, num_elements).
    """
    dims = tuple(int(d) for d in shape)

    if len(dims) == 3:
        if dims[0] != 1:
            raise TensorShapeMismatch(
                f"Batch > 1 is not supported here (got shape {dims}). "
                f"Use decode_batch() instead."
            )
        dims = dims[1:]

    if len(dims) != 2:
        raise TensorShapeMismatch(f"Unsupported output shape: {tuple(shape)}")

    return dims[0], dims[1]


def validate_layout(
    tensor_size: int,
    num_channel: int,
    num_elements: int,
    labels: Sequence[str],
) -> None:
    """
    Check a tensor size and label list against the declared layout.

    Raises:
        TensorShapeMismatch: Fewer than 4 channels, negative element count,
            or a flat length other than num_channel * num_elements.
        LabelCountMismatch: len(labels) != num_channel - 4.
    """
    if num_channel < NUM_BOX_CHANNELS:
        raise TensorShapeMismatch(
            f"Need at least {NUM_BOX_CHANNELS} box channels, got num_channel={num_channel}"
        )
    if num_elements < 0:
        raise TensorShapeMismatch(f"num_elements must be >= 0, got {num_elements}")

    expected = num_channel * num_elements
    if tensor_size != expected:
        raise TensorShapeMismatch(
            f"Tensor has {tensor_size} values, expected {expected} "
            f"({num_channel} channels x {num_elements} elements)"
        )

    num_classes = num_channel - NUM_BOX_CHANNELS
    if len(labels) != num_classes:
        raise LabelCountMismatch(len(labels), num_classes)


def decode(
    tensor: np.ndarray,
    num_channel: int,
    num_elements: int,
    labels: Sequence[str],
    confidence_threshold: float = DEFAULT_CONFIDENCE_THRESHOLD,
) -> List[BoundingBox]:
    """
    Decode a prediction tensor into candidate boxes.

    Args:
        tensor: Flat float sequence of length num_channel * num_elements.
            Arrays shaped (1, C, N) or (C, N) are flattened in C order,
            which gives the same layout.
        num_channel: Channels per cell (4 box values + one per class).
        num_elements: Number of candidate cells.
        labels: Class names, one per class channel.
        confidence_threshold: Cells need a best score strictly above this.

    Returns:
        Candidate boxes in cell order. Empty when nothing survives, which
        is a normal result.

    Raises:
        TensorShapeMismatch: See validate_layout().
        LabelCountMismatch: See validate_layout().

    Example:
        >>> boxes = decode(output, 84, 8400, coco_labels, 0.3)
        >>> for box in boxes:
        ...     print(box.class_name, box.confidence)
    """
    flat = np.asarray(tensor, dtype=np.float32).reshape(-1)
    validate_layout(flat.size, num_channel, num_elements, labels)

    if num_elements == 0 or num_channel == NUM_BOX_CHANNELS:
        return []

    grid = flat.reshape(num_channel, num_elements)

    # NaN never wins the class scan
    class_scores = grid[NUM_BOX_CHANNELS:, :]
    class_scores = np.where(np.isnan(class_scores), -np.inf, class_scores)

    # argmax returns the first maximum -> lowest class index wins ties
    class_ids = np.argmax(class_scores, axis=0)
    scores = class_scores[class_ids, np.arange(num_elements)]

    # Compare in the tensor's precision so a score equal to the threshold is rejected
    candidates = np.nonzero(scores > np.float32(confidence_threshold))[0]
    if candidates.size == 0:
        logger.debug(f"No cell above confidence {confidence_threshold}")
        return []

    cx, cy, w, h = grid[0:NUM_BOX_CHANNELS, candidates]
    x1 = cx - w / np.float32(2)
    y1 = cy - h / np.float32(2)
    x2 = cx + w / np.float32(2)
    y2 = cy + h / np.float32(2)

    # A negative w or h gives an inverted box; drop it
    inside = (w >= 0) & (h >= 0) & (x1 >= 0) & (y1 >= 0) & (x2 <= 1) & (y2 <= 1)

    boxes = []
    for k in np.nonzero(inside)[0]:
        class_index = int(class_ids[candidates[k]])
        boxes.append(BoundingBox(
            x1=float(x1[k]),
            y1=float(y1[k]),
            x2=float(x2[k]),
            y2=float(y2[k]),
            cx=float(cx[k]),
            cy=float(cy[k]),
            w=float(w[k]),
            h=float(h[k]),
            confidence=float(scores[candidates[k]]),
            class_index=class_index,
            class_name=labels[class_index],
        ))

    logger.debug(
        f"Decoded {len(boxes)} boxes from {num_elements} cells "
        f"({candidates.size} above threshold, "
        f"{candidates.size - len(boxes)} inverted or outside the frame)"
    )

    return boxes


def decode_batch(
    tensor: np.ndarray,
    labels: Sequence[str],
    confidence_threshold: float = DEFAULT_CONFIDENCE_THRESHOLD,
    num_channel: Optional[int] = None,
    num_elements: Optional[int] = None,
) -> List[List[BoundingBox]]:
    """
    Decode a batch of prediction tensors, one list per frame.

    Args:
        tensor: (B, C, N) array.
        labels: Class names, one per class channel.
        confidence_threshold: Cells need a best score strictly above this.
        num_channel: Optional check against the array's C dimension.
        num_elements: Optional check against the array's N dimension.

    Returns:
        List of B candidate lists.
    """
    batch = np.asarray(tensor, dtype=np.float32)
    if batch.ndim != 3:
        raise TensorShapeMismatch(f"Expected a (B, C, N) batch, got shape {batch.shape}")

    _, channels, elements = batch.shape
    if num_channel is not None and num_channel != channels:
        raise TensorShapeMismatch(f"Batch has {channels} channels, expected {num_channel}")
    if num_elements is not None and num_elements != elements:
        raise TensorShapeMismatch(f"Batch has {elements} elements, expected {num_elements}")
    validate_layout(channels * elements, channels, elements, labels)

    return [
        decode(frame, channels, elements, labels, confidence_threshold)
        for frame in batch
    ]
