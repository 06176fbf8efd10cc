"""Relations that gate direct messaging: blocks, follows, privacy."""
