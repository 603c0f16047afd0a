"""Reasoning providers."""
