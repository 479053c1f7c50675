"""Google Sheets to database synchronization for the tour operations back office."""

__version__ = "1.0.0"
