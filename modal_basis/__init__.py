"""Modal basis precomputation for real-time modal sound synthesis."""

__version__ = "0.1.0"
