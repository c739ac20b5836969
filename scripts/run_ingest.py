"""CLI entrypoint for ingesting study documents into a set."""

from __future__ import annotations

import argparse
import sys
from pathlib import Path

PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from study_engine.config import AppConfig  # noqa: E402
from study_engine.pipeline import StudyEngine  # noqa: E402


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Ingest study documents into a set.")
    parser.add_argument(
        "--config",
        type=str,
        default=str(PROJECT_ROOT / "config.yaml"),
        help="Path to YAML config.",
    )
    target = parser.add_mutually_exclusive_group(required=True)
    target.add_argument("--set-id", type=str, help="Existing set to add documents to.")
    target.add_argument("--set-name", type=str, help="Create a new set with this name.")
    parser.add_argument("--subject", type=str, default=None, help="Subject for a new set.")
    parser.add_argument(
        "--input",
        action="append",
        required=True,
        help="Text or markdown file to ingest (repeatable).",
    )
    return parser.parse_args()


def main() -> None:
    args = parse_args()
    config = AppConfig.from_yaml(args.config)
    engine = StudyEngine(config)

    set_id = args.set_id
    if set_id is None:
        set_id = engine.create_set(args.set_name, subject=args.subject).id
        print(f"Created set {set_id}")

    for path in args.input:
        chunk_count = engine.ingest_file(set_id, path)
        print(f"{path}: {chunk_count} chunks")

    print("Ingestion complete.")
    for key, value in engine.stats().items():
        print(f"{key}: {value}")


if __name__ == "__main__":
    main()
