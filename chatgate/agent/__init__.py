"""Core pipeline: routing, access control, rate governance, dispatch."""
