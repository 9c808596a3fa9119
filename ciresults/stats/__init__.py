from ciresults.stats.engine import StatsEngine
from ciresults.stats.models import InvalidStatsRequest, Stats, StatsRequest

__all__ = ["InvalidStatsRequest", "Stats", "StatsEngine", "StatsRequest"]
