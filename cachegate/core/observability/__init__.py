from .usage_stats import UsageStatsTracker, get_usage_tracker

__all__ = ["UsageStatsTracker", "get_usage_tracker"]
