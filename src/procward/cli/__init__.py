"""Command-line surface for procward."""
