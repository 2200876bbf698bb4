"""Domain Layer: value objects, errors, events and ports.

Nothing here depends on infrastructure; components in the infrastructure
layer implement the interfaces declared in domain.interfaces.
"""
