from .stats import ProcessingStats

__all__ = ["ProcessingStats"]
