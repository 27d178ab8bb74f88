#!/usr/bin/env python3
"""
Lint and format voicegate.

    uv run lint.py           fix what ruff, isort and black can fix
    uv run lint.py --check   report only, exit 1 on any finding (CI)
"""

import subprocess
import sys
from pathlib import Path

TARGETS = ["voicegate", "cogs", "tests", "main.py", "lint.py"]


def build_operations(check_only: bool) -> list[tuple[list[str], str]]:
    """Commands to run, in order, for the selected mode."""
    if check_only:
        return [
            (["ruff", "check", *TARGETS], "ruff lint"),
            (["isort", "--check-only", "--diff", *TARGETS], "isort check"),
            (["black", "--check", *TARGETS], "black check"),
        ]
    # isort before black so black has the last word on layout
    return [
        (["ruff", "check", "--fix", *TARGETS], "ruff fix"),
        (["isort", *TARGETS], "isort"),
        (["black", *TARGETS], "black"),
    ]


def run_step(command: list[str], label: str) -> bool:
    print(f"\n{'-' * 80}\n{label}: {' '.join(command)}\n{'-' * 80}")
    try:
        result = subprocess.run(command, cwd=Path(__file__).parent)
    except FileNotFoundError:
        print(f"❌ {command[0]} is not installed (pip install -e '.[dev]')")
        return False
    print(f"{'✅' if result.returncode == 0 else '❌'} {label}")
    return result.returncode == 0


def main() -> int:
    check_only = "--check" in sys.argv[1:]
    print("🔍 check mode" if check_only else "🔧 fix mode")

    results = [(label, run_step(command, label)) for command, label in build_operations(check_only)]

    print(f"\n{'=' * 80}")
    for label, passed in results:
        print(f"{'✅ passed' if passed else '❌ failed'}: {label}")

    if all(passed for _, passed in results):
        return 0
    if check_only:
        print("\n⚠️  Run 'uv run lint.py' without --check to fix what can be fixed.")
    return 1


if __name__ == "__main__":
    sys.exit(main())
