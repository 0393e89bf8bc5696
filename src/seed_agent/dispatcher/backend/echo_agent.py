"""Local demo agent for CLI backend integration tests."""

from __future__ import annotations

import argparse
import json
import os
import sys
from pathlib import Path


def main(argv: list[str] | None = None) -> int:
    """Echo the prompt back as the job response."""

    parser = argparse.ArgumentParser()
    parser.add_argument("--prompt-file", required=True)
    parser.add_argument("--workdir", default=None)
    parser.add_argument("--write-file", action="append", default=[])
    parser.add_argument("--fail-with", default=None)
    args = parser.parse_args(argv)

    if args.fail_with:
        print(args.fail_with, file=sys.stderr)
        return 1

    workdir = Path(args.workdir or os.getenv("SEED_AGENT_WORKDIR") or Path.cwd())
    prompt = Path(args.prompt_file).read_text("utf-8").strip()
    tools_enabled = os.getenv("SEED_AGENT_TOOLS_ENABLED", "1") == "1"

    files_dir = workdir / "output" / "files"
    for name in args.write_file:
        target = files_dir / name
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(f"{name}\n{prompt}\n", "utf-8")

    words = len(prompt.split())
    payload = {
        "text": prompt or "empty prompt",
        "steps": [{"text": prompt, "tool_calls": []}],
        "usage": {
            "prompt_tokens": words,
            "completion_tokens": words,
            "total_tokens": words * 2,
        },
        "metadata": {"backend": "echo_agent", "tools_enabled": tools_enabled},
    }
    result_path = workdir / "output" / "agent_result.json"
    result_path.parent.mkdir(parents=True, exist_ok=True)
    result_path.write_text(json.dumps(payload), "utf-8")
    return 0


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
