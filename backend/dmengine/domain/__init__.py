"""Domain packages for the direct-message engine."""
