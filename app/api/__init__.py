"""HTTP request layer: routers and request dependencies."""
