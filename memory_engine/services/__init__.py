"""
Memory Engine - Services
"""

from .worker_pool import CompactionWorkerPool

__all__ = ["CompactionWorkerPool"]
