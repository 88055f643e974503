"""State Inspection Script

Validates the files the sync persists between runs:
  - Checkpoint: parses, has non-negative integer page and record id, timestamp
  - Failure log: a JSON array of {id, error, time, kind} objects

Usage:
    python -m src.xano_es_sync.scripts.inspect_state \\
        --checkpoint checkpoint.json \\
        --errors errors.json

Exits with code 0 on success, 1 on validation failure, 2 on argument error.
"""

import argparse
import json
from collections import Counter
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from ..errors import FailureKind

CHECKPOINT_KEYS = ("lastProcessedPage", "lastProcessedRecordId")
ENTRY_KEYS = ("id", "error", "time")


def load_json(path: Path) -> Any:
    with path.open("r", encoding="utf-8") as f:
        return json.load(f)


def is_non_negative_int(x: Any) -> bool:
    return isinstance(x, int) and not isinstance(x, bool) and x >= 0


def validate_checkpoint(data: Any) -> Tuple[List[str], List[str]]:
    """Validate a loaded checkpoint object.

    Returns:
        (errors, warnings)
    """
    errors: List[str] = []
    warnings: List[str] = []

    if not isinstance(data, dict):
        errors.append(f"checkpoint should be an object, got {type(data).__name__}")
        return errors, warnings

    for key in CHECKPOINT_KEYS:
        if key not in data:
            errors.append(f"checkpoint missing '{key}'")
        elif not is_non_negative_int(data[key]):
            errors.append(f"checkpoint '{key}' should be a non-negative integer (got {data[key]!r})")

    if "timestamp" not in data:
        warnings.append("checkpoint has no 'timestamp'")
    elif not isinstance(data["timestamp"], str):
        warnings.append(f"checkpoint 'timestamp' is not a string (got {type(data['timestamp']).__name__})")

    return errors, warnings


def validate_failure_entry(entry: Any, idx: int) -> Tuple[List[str], List[str]]:
    errors: List[str] = []
    warnings: List[str] = []

    if not isinstance(entry, dict):
        errors.append(f"[idx={idx}] entry should be an object, got {type(entry).__name__}")
        return errors, warnings

    for key in ENTRY_KEYS:
        if key not in entry:
            errors.append(f"[idx={idx}] missing '{key}'")
        elif not isinstance(entry[key], str):
            errors.append(f"[idx={idx}] '{key}' should be a string, got {type(entry[key]).__name__}")

    kind = entry.get("kind")
    if kind is None:
        warnings.append(f"[idx={idx}] entry has no 'kind'")
    elif kind not in {k.value for k in FailureKind}:
        errors.append(f"[idx={idx}] unknown kind {kind!r}")

    return errors, warnings


def summarize_failures(entries: List[Dict[str, Any]]) -> Dict[str, int]:
    """Count failure entries by kind."""
    return dict(Counter(e.get("kind", "unknown") for e in entries if isinstance(e, dict)))


def main(argv: Optional[List[str]] = None) -> None:
    """Validate persisted sync state.

    Raises:
        SystemExit: With code 0 on success, 1 on validation failure
    """
    parser = argparse.ArgumentParser(
        description="Validate the sync checkpoint and failure log files."
    )
    parser.add_argument(
        "--checkpoint",
        type=str,
        required=True,
        help="Path to checkpoint.json",
    )
    parser.add_argument(
        "--errors",
        type=str,
        default=None,
        help="Path to errors.json. If not provided, only the checkpoint is checked.",
    )
    args = parser.parse_args(argv)

    all_errors: List[str] = []
    all_warnings: List[str] = []

    try:
        checkpoint = load_json(Path(args.checkpoint))
    except (OSError, json.JSONDecodeError) as e:
        print(f"FAILED TO LOAD CHECKPOINT: {e}")
        raise SystemExit(1)

    errors, warnings = validate_checkpoint(checkpoint)
    all_errors.extend(errors)
    all_warnings.extend(warnings)

    entries: List[Any] = []
    if args.errors:
        errors_path = Path(args.errors)
        if not errors_path.exists():
            all_warnings.append(f"failure log {errors_path} does not exist")
        else:
            try:
                entries = load_json(errors_path)
            except (OSError, json.JSONDecodeError) as e:
                print(f"FAILED TO LOAD FAILURE LOG: {e}")
                raise SystemExit(1)
            if not isinstance(entries, list):
                all_errors.append("failure log top-level JSON is not a list")
                entries = []
            for idx, entry in enumerate(entries):
                errors, warnings = validate_failure_entry(entry, idx)
                all_errors.extend(errors)
                all_warnings.extend(warnings)

    if all_errors:
        print("VALIDATION FAILED:\n")
        for err in all_errors:
            print(err)
        print(f"\nTotal errors: {len(all_errors)}")
        if all_warnings:
            print(f"Total warnings: {len(all_warnings)}")
        raise SystemExit(1)

    print("VALIDATION PASSED")
    print(f"Last processed page: {checkpoint['lastProcessedPage']}")
    print(f"Last processed record id: {checkpoint['lastProcessedRecordId']}")
    if args.errors:
        print(f"Failure entries: {len(entries)}")
        for kind, count in sorted(summarize_failures(entries).items()):
            print(f"  {kind}: {count}")
    if all_warnings:
        print("\nWarnings (non-fatal):")
        for w in all_warnings:
            print(w)
        print(f"\nTotal warnings: {len(all_warnings)}")

    raise SystemExit(0)


if __name__ == "__main__":
    main()
