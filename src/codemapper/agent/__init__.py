"""AI backend access: provider adapters and the best-effort enricher."""
