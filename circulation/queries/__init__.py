"""Query execution package."""

from circulation.queries.executor import CirculationQueries

__all__ = ["CirculationQueries"]
