"""Container runtime bindings."""
