"""jobpoller: background trigger for billing processing and due schedules."""

__version__ = "1.0.0"
