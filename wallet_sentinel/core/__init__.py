"""
Core utilities — error taxonomy and cross-cutting concerns.

Shared by the gateway, scorer, enrichment adapter and coordinator.
"""
