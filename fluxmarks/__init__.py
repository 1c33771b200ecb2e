"""FluxMarks: a browser bookmark side panel with a custom layout layer."""

__version__ = "0.1.0"
