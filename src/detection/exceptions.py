"""Errors raised by the detection post-processing core."""


class PostprocessError(ValueError):
    """Base class for tensor/label configuration errors."""


class TensorShapeMismatch(PostprocessError):
    """Prediction tensor does not match the declared (num_channel, num_elements)."""


class LabelCountMismatch(PostprocessError):
    """Label list length does not match the number of class channels."""

    def __init__(self, num_labels: int, num_classes: int):
        self.num_labels = num_labels
        self.num_classes = num_classes
        super().__init__(
            f"Got {num_labels} labels but the tensor has {num_classes} class channels"
        )
