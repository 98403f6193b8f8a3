"""Database primitives."""
