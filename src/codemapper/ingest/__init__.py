"""Repository ingestion: fetch, extract, scan."""
