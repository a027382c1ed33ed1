"""Metric pipeline library: receivers, handlers and senders for moving metrics."""

__version__ = "0.1.0"