"""Utility functions for the line3d project."""

from .export import (
    lines_to_array,
    save_txt,
    save_obj,
    save_stl,
    export_results
)
from .visualization import (
    draw_lines_on_image,
    visualize_3d_lines,
    create_line_set,
    save_line_set,
    plot_line_statistics
)

__all__ = [
    'lines_to_array',
    'save_txt',
    'save_obj',
    'save_stl',
    'export_results',
    'draw_lines_on_image',
    'visualize_3d_lines',
    'create_line_set',
    'save_line_set',
    'plot_line_statistics'
]
