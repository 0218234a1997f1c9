#!/usr/bin/env python3
"""CLI: Map a GitHub repository or a local .zip archive into architecture diagrams."""

from __future__ import annotations

import argparse
import json
import logging
import sys
import time
from pathlib import Path

# Ensure the package is importable when running as a script
sys.path.insert(0, str(Path(__file__).resolve().parent.parent / "src"))

from codemapper import config
from codemapper.agent.enricher import Enricher
from codemapper.agent.provider import create_provider
from codemapper.errors import MapperError
from codemapper.ingest.ingestor import ArchiveIngestor
from codemapper.mapper.ask import AskEngine
from codemapper.mapper.pipeline import MapperPipeline
from codemapper.models import MapRequest
from codemapper.storage import create_store


def main() -> None:
    parser = argparse.ArgumentParser(description="Map a codebase into architecture diagrams")
    parser.add_argument(
        "--repo-url",
        type=str,
        default=None,
        help="GitHub repository URL (https://github.com/owner/repo[/tree/branch])",
    )
    parser.add_argument(
        "--archive",
        type=Path,
        default=None,
        help="Path to a .zip archive of the codebase (instead of --repo-url)",
    )
    parser.add_argument(
        "--token",
        type=str,
        default=None,
        help="GitHub token for private repositories",
    )
    parser.add_argument(
        "--focus",
        action="append",
        default=[],
        choices=sorted(config.FOCUS_AREAS),
        help="Focus area to emphasize (repeatable)",
    )
    parser.add_argument(
        "--ask",
        type=str,
        default=None,
        help="Ask a question against the mapping once it is built",
    )
    parser.add_argument(
        "--json",
        action="store_true",
        help="Print the full mapping response as JSON",
    )
    args = parser.parse_args()

    logging.basicConfig(
        level=getattr(logging, config.LOG_LEVEL, logging.INFO),
        format="%(asctime)s %(levelname)-5s [%(name)s] %(message)s",
        datefmt="%H:%M:%S",
        stream=sys.stderr,
    )

    if bool(args.repo_url) == bool(args.archive):
        print("Error: pass exactly one of --repo-url or --archive.", file=sys.stderr)
        sys.exit(1)

    request = MapRequest(repo_url=args.repo_url, auth_token=args.token, focus_areas=args.focus)
    if args.archive:
        if not args.archive.is_file():
            print(f"Error: archive {args.archive} not found.", file=sys.stderr)
            sys.exit(1)
        request.archive_bytes = args.archive.read_bytes()
        request.archive_name = args.archive.stem

    store = create_store()
    enricher = Enricher(create_provider())
    pipeline = MapperPipeline(store, ArchiveIngestor(), enricher)

    start = time.time()
    try:
        response = pipeline.run(request)
        answer = AskEngine(store, enricher).ask(response.mapping_id, args.ask) if args.ask else None
    except MapperError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)
    elapsed = time.time() - start

    if args.json:
        payload = response.to_dict()
        if answer is not None:
            payload["ask"] = answer.to_dict()
        print(json.dumps(payload, indent=2))
        return

    for line in response.progress_logs:
        print(f"  {line}")
    summary = response.summary
    print(f"\nMapping {response.mapping_id} ({'cached' if response.cache_hit else 'fresh'}, {elapsed:.1f}s)")
    print(f"  Repository: {summary.repo_name} @ {summary.commit_sha}")
    print(f"  Files: {summary.file_count}  API routes: {summary.route_count}  Agents: {summary.agent_count}")
    print(f"  Languages: {', '.join(summary.languages) or 'unknown'}")
    print(f"  Frameworks: {', '.join(summary.frameworks) or 'unknown'}")
    print(f"\nDiagrams ({len(response.diagrams)}):")
    for diagram in response.diagrams:
        print(f"  {diagram.id:<22} {diagram.title} ({len(diagram.nodes)} nodes, {len(diagram.edges)} edges)")
    cost = response.cost
    print(f"\nCost: {cost.prompt_tokens} prompt / {cost.completion_tokens} completion tokens, ${cost.estimated_usd:.6f}")

    if answer is not None:
        print(f"\nQ: {args.ask}\nA: {answer.answer}")
        if answer.regenerated_diagrams:
            print(f"  Regenerated: {', '.join(d.id for d in answer.regenerated_diagrams)}")


if __name__ == "__main__":
    main()
