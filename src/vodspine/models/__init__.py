"""Models for vodspine."""

from vodspine.models.base import VodSpineModel
from vodspine.models.crawl_run import CrawlRun, CrawlRunStatus
from vodspine.models.page import Page, PageRequest

__all__ = [
    # Base
    "VodSpineModel",
    # Pages
    "Page",
    "PageRequest",
    # Runs
    "CrawlRun",
    "CrawlRunStatus",
]
