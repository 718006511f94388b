"""Domain layer: entities, ports and pure services."""
