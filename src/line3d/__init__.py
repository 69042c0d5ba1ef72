"""
line3d: 3D line reconstruction from 2D line segments

Reconstructs 3D line segments from 2D segments detected in multiple
calibrated images, using epipolar matching, 3D consistency scoring and
affinity graph clustering.
"""

import logging as _logging
from .logging import configure_logger as configure_logger
from .logging import logger as _logger

if not any(not isinstance(h, _logging.NullHandler) for h in _logger.handlers):
    configure_logger()

__version__ = "0.1.0"
__author__ = "line3d Contributors"

from .line_reconstruction import LineReconstructor, Thresholds
from .pipeline import Pipeline

__all__ = ['LineReconstructor', 'Thresholds', 'Pipeline', 'configure_logger']
