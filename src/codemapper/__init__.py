"""Codebase mapping: ingest a repository, derive architecture diagrams, ask and refine."""
