"""Domain Layer: value objects, events and ports shared by the poller."""
