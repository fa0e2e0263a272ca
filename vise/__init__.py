"""Histogram buckets, label and metric group definitions, format translation and exporting."""

__version__ = "0.2.0"
__all__ = ["attributes", "buckets", "descriptors", "exporter", "format", "groups", "labels"]