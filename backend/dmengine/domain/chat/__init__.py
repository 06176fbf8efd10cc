"""Direct-message conversations: access, state, gating and persistence."""
