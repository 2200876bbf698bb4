"""Domain models: configuration value objects and status snapshots."""
