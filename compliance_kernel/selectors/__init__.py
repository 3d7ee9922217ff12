"""Read-only selectors over the node graph and the change log."""
