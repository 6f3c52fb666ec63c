"""Shell and filesystem bindings."""
