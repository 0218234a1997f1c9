"""Mapping orchestration and the Ask / Improve engines built on its cache."""
