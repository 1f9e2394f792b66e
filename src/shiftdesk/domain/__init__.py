"""Domain layer: model, ports and the services built on them."""
