"""revbench — Measure compiler performance across its revision history."""

__version__ = "0.1.0"
