"""Cross-cutting domain helpers shared by the chat and social packages."""
