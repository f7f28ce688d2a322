"""Statement decoding, parsing and text repair."""
