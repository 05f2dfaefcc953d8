"""Infrastructure layer: configuration, event bus, registry, storage,
deal providers and the text-completion adapter."""
