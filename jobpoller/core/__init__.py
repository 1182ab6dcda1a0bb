"""Core Application Layer: the billing and scheduling cycles and the poll loop.

Connects the domain layer with the infrastructure layer.
"""
