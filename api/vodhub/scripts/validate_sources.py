"""Validate source registry manifests."""

from __future__ import annotations

import argparse
from pathlib import Path

from vodhub.catalog.registry import validate_source_paths


def _collect_manifest_files(target: Path) -> list[Path]:
    if target.is_dir():
        return sorted(target.glob("*.yaml")) + sorted(target.glob("*.yml"))
    if target.is_file():
        return [target]
    raise FileNotFoundError(f"Path not found: {target}")


def main(argv: list[str] | None = None) -> int:
    repo_root = Path(__file__).resolve().parents[3]
    default_path = repo_root / "sources.yaml"

    parser = argparse.ArgumentParser(description="Validate source registry manifests")
    parser.add_argument(
        "--path",
        default=str(default_path),
        help="Path to a manifest file or directory (default: sources.yaml)",
    )
    args = parser.parse_args(argv)
    target = Path(args.path).resolve()

    paths = _collect_manifest_files(target)
    errors = validate_source_paths(paths)
    if errors:
        for error in errors:
            print(error)
        return 1

    print(f"Validated {len(paths)} manifest file(s).")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
