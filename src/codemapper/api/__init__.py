"""HTTP surface for the mapper."""
