"""
Scrape pipeline package
"""

from .orchestrator import PipelineStage, RunMode, RunSummary, ScrapeOrchestrator, ScrapeRun

__all__ = ["PipelineStage", "RunMode", "RunSummary", "ScrapeOrchestrator", "ScrapeRun"]
