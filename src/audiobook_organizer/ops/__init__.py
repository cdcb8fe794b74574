"""File operations on library members (pattern renames, moves)."""
