"""API Resilience Implementations.

Contains the retry service with exponential backoff.
Bounded Context: API Resilience
"""
