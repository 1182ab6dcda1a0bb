"""Domain Event definitions.

Represents significant occurrences (retries, failures, finished cycles) that
are dispatched to the debug log.
"""
