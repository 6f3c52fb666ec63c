"""External tool bindings: package manager, preferences, network, containers, shell and filesystem."""
