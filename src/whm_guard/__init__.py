"""In-process coordination layer for WHM hosting-panel API calls."""

__version__ = "0.1.0"
