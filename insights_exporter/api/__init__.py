"""HTTP endpoints served alongside the snapshot scheduler."""
