"""Classification package: deterministic rule tables and the engine that applies them."""
