"""Upload, reconciliation and save pipeline for lab reports."""

__version__ = "0.1.0"
