"""Application layer: streaming adapter and model operations."""
