"""Domain layer: enums, exceptions, value objects, entities and events."""
