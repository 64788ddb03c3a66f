"""
Periodic job scheduling.
"""

from .scheduler import Job, JobTask, Scheduler

__all__ = ["Job", "JobTask", "Scheduler"]
