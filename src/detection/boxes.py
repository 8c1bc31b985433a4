"""
Bounding box value type produced by the decoder.

Coordinate Systems:
==================
  - Normalized: every coordinate is a fraction of the model's input frame,
    so the whole frame is [0, 1] x [0, 1].
  - Origin at top-left, x increases right, y increases down.
  - Box format: corners (x1, y1, x2, y2) plus the centre/size (cx, cy, w, h)
    the model emitted. IoU uses w * h for the box area.
"""

from dataclasses import dataclass
from typing import Any, Dict, List, Tuple


@dataclass(frozen=True)
class BoundingBox:
    """
    Single decoded detection in normalized coordinates.

    Attributes:
        x1: Left edge.
        y1: Top edge.
        x2: Right edge.
        y2: Bottom edge.
        cx: Box centre x.
        cy: Box centre y.
        w: Box width.
        h: Box height.
        confidence: Winning class score.
        class_index: Index into the label list.
        class_name: Label at ``class_index``.
    """

    x1: float
    y1: float
    x2: float
    y2: float
    cx: float
    cy: float
    w: float
    h: float
    confidence: float
    class_index: int
    class_name: str

    @property
    def area(self) -> float:
        """Normalized area (w * h)."""
        return self.w * self.h

    @property
    def width(self) -> float:
        return self.x2 - self.x1

    @property
    def height(self) -> float:
        return self.y2 - self.y1

    @property
    def xyxy(self) -> Tuple[float, float, float, float]:
        return self.x1, self.y1, self.x2, self.y2

    @property
    def xywh(self) -> Tuple[float, float, float, float]:
        return self.cx, self.cy, self.w, self.h

    def to_pixels(
        self,
        image_width: int,
        image_height: int,
    ) -> Tuple[float, float, float, float]:
        """
        Scale the corners to pixel space of an image.

        Args:
            image_width: Target image width in pixels.
            image_height: Target image height in pixels.

        Returns:
            (x1, y1, x2, y2) in pixels.

        Example:
            >>> box.to_pixels(640, 480)
            (256.0, 192.0, 384.0, 288.0)
        """
        if image_width <= 0 or image_height <= 0:
            raise ValueError(
                f"Image size must be positive, got {image_width}x{image_height}"
            )
        return (
            self.x1 * image_width,
            self.y1 * image_height,
            self.x2 * image_width,
            self.y2 * image_height,
        )

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "bbox": list(self.xyxy),
            "center": [self.cx, self.cy],
            "size": [self.w, self.h],
            "confidence": self.confidence,
            "class_index": self.class_index,
            "class_name": self.class_name,
        }

    def __repr__(self) -> str:
        return (
            f"BoundingBox({self.class_name}, "
            f"conf={self.confidence:.2f}, "
            f"bbox=[{self.x1:.3f}, {self.y1:.3f}, {self.x2:.3f}, {self.y2:.3f}])"
        )


def scale_boxes(
    boxes: List[BoundingBox],
    image_width: int,
    image_height: int,
) -> List[Tuple[float, float, float, float]]:
    """Pixel rectangles for a list of boxes, in the same order."""
    return [box.to_pixels(image_width, image_height) for box in boxes]
