"""
Memory Engine - Utils
"""

from .server_logger import log_compaction, log_error, setup_logger

__all__ = ["setup_logger", "log_error", "log_compaction"]
