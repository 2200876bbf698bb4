"""Core Application Layer: Orchestrates use cases.

Composes the resilience primitives into ResilientClient and routes CLI
commands through CommandHandler.
"""
