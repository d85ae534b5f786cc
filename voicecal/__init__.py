"""Voice-driven calendar scheduling service."""
