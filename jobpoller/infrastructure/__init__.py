"""Infrastructure Layer: Contains concrete implementations and adapters.

Connects the poller to the outside world (remote API, identity provider,
environment, log output).
"""
