"""Shared fixtures for detection tests."""

import sys
from pathlib import Path
from typing import List, Sequence, Tuple

import numpy as np
import pytest

# Make `import src...` work without installing the package
PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from src.detection.boxes import BoundingBox


Cell = Tuple[float, float, float, float, Sequence[float]]


def build_tensor(cells: List[Cell]) -> np.ndarray:
    """
    Build a (C, N) float32 output tensor from per-cell values.

    Each cell is (cx, cy, w, h, class_scores).
    """
    num_classes = len(cells[0][4])
    tensor = np.zeros((4 + num_classes, len(cells)), dtype=np.float32)

    for c, (cx, cy, w, h, scores) in enumerate(cells):
        tensor[0:4, c] = [cx, cy, w, h]
        tensor[4:, c] = scores

    return tensor


def build_box(
    x1: float,
    y1: float,
    x2: float,
    y2: float,
    confidence: float,
    class_index: int = 0,
    class_name: str = "object",
) -> BoundingBox:
    """BoundingBox from corners, filling in centre and size."""
    return BoundingBox(
        x1=x1,
        y1=y1,
        x2=x2,
        y2=y2,
        cx=(x1 + x2) / 2,
        cy=(y1 + y2) / 2,
        w=x2 - x1,
        h=y2 - y1,
        confidence=confidence,
        class_index=class_index,
        class_name=class_name,
    )


@pytest.fixture
def make_tensor():
    """Factory for (C, N) output tensors."""
    return build_tensor


@pytest.fixture
def make_box():
    """Factory for BoundingBox values from corners."""
    return build_box


@pytest.fixture
def two_class_labels():
    return ["cat", "dog"]


@pytest.fixture
def overlapping_pair_tensor(make_tensor):
    """
    Two cells covering the same region.

    Cell 0: class 0 at 0.9. Cell 1: class 1 at 0.95.
    """
    return make_tensor([
        (0.5, 0.5, 0.2, 0.2, [0.9, 0.1]),
        (0.5, 0.5, 0.2, 0.2, [0.4, 0.95]),
    ])
