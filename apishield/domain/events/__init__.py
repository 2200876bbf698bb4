"""Domain Event definitions.

Represents significant occurrences within the resilience layer that callers
might react to (metrics, UI progress, audit logs).
"""
