"""Padding, session pooling, user control, traffic limiting, HTTP fronting and configuration for a tunnelling proxy."""

__version__ = "0.1.0"