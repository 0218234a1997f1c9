"""Diagram construction and normalization."""
