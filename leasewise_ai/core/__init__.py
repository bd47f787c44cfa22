"""
Core utilities and configuration for Leasewise-AI.

This package provides process-wide functionality such as logging
configuration.
"""

from leasewise_ai.core.logging_config import get_logger, setup_logging

__all__ = ["get_logger", "setup_logging"]
