"""Detection post-processing: prediction tensor -> labelled, suppressed boxes."""

__version__ = "0.1.0"
__author__ = "Nagarjunan"

from . import utils
from . import detection
