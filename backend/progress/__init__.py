"""
Progress tracking package
"""

from .tracker import JobSnapshot, JobStatus, ProgressTracker, Subscription

__all__ = ["JobSnapshot", "JobStatus", "ProgressTracker", "Subscription"]
