"""Per-job build directories for file-based generation."""

from __future__ import annotations

import hashlib
import logging
import re
import shutil
import zipfile
from dataclasses import dataclass
from pathlib import Path

from seed_agent.dispatcher.models import Artifact

logger = logging.getLogger(__name__)

_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9._-]+")


@dataclass(slots=True)
class JobWorkdir:
    """Build context owned by exactly one job's generation.

    The agent writes deliverable files under `files_dir`; everything under
    `output_dir` belongs to the current attempt and is wiped by
    `reset_output()`.
    """

    job_id: str
    base_dir: Path
    input_dir: Path
    output_dir: Path
    files_dir: Path
    prompt_path: Path
    system_prompt_path: Path
    result_path: Path
    stdout_path: Path
    stderr_path: Path

    def reset_output(self) -> None:
        if self.output_dir.exists():
            shutil.rmtree(self.output_dir)
        self.files_dir.mkdir(parents=True, exist_ok=True)

    def write_prompts(self, *, prompt: str, system_prompt: str) -> None:
        self.input_dir.mkdir(parents=True, exist_ok=True)
        self.prompt_path.write_text(prompt, "utf-8")
        self.system_prompt_path.write_text(system_prompt, "utf-8")

    def produced_files(self) -> list[Path]:
        if not self.files_dir.exists():
            return []
        return sorted(path for path in self.files_dir.rglob("*") if path.is_file())

    def package_files(self) -> list[Artifact]:
        """Zip everything under `files_dir` into one artifact."""

        files = self.produced_files()
        if not files:
            return []
        zip_path = self.output_dir / f"{_safe_name(self.job_id)}.zip"
        with zipfile.ZipFile(zip_path, "w", compression=zipfile.ZIP_DEFLATED) as archive:
            for path in files:
                archive.write(path, arcname=path.relative_to(self.files_dir).as_posix())
        logger.debug("Packaged %d files into %s", len(files), zip_path)
        return [Artifact(path=zip_path, size_bytes=zip_path.stat().st_size)]

    def cleanup(self) -> None:
        shutil.rmtree(self.base_dir, ignore_errors=True)


class JobWorkdirManager:
    """Creates deterministic per-job directory layout."""

    def __init__(self, root_dir: Path) -> None:
        self.root_dir = root_dir

    def materialize(self, job_id: str) -> JobWorkdir:
        base_dir = self.root_dir / _dir_name(job_id)
        input_dir = base_dir / "input"
        output_dir = base_dir / "output"
        input_dir.mkdir(parents=True, exist_ok=True)
        output_dir.mkdir(parents=True, exist_ok=True)
        workdir = JobWorkdir(
            job_id=job_id,
            base_dir=base_dir,
            input_dir=input_dir,
            output_dir=output_dir,
            files_dir=output_dir / "files",
            prompt_path=input_dir / "prompt.txt",
            system_prompt_path=input_dir / "system_prompt.txt",
            result_path=output_dir / "agent_result.json",
            stdout_path=output_dir / "agent_stdout.log",
            stderr_path=output_dir / "agent_stderr.log",
        )
        workdir.reset_output()
        return workdir


def _safe_name(value: str) -> str:
    return _UNSAFE_CHARS.sub("_", value).strip("._") or "job"


def _dir_name(job_id: str) -> str:
    """Readable and collision-free: distinct ids never share a directory."""

    digest = hashlib.sha1(job_id.encode("utf-8"), usedforsecurity=False).hexdigest()  # noqa: S324
    return f"{_safe_name(job_id)}-{digest[:8]}"
