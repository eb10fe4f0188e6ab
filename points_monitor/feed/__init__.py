"""
Remote feed access for points monitoring.

Provides the HTTP client for the points history feed.
"""

from .client import FeedPage, PointsFeedClient, PointsInfo

__all__ = ["FeedPage", "PointsFeedClient", "PointsInfo"]
