"""Subprocess-based generation backend for CLI agents."""

from __future__ import annotations

import asyncio
import json
import logging
import os
import shlex
from typing import Any

from seed_agent.dispatcher.backend.base import BackendResponse, GenerationRequest
from seed_agent.dispatcher.models import GenerationStep, GenerationUsage, ToolCall
from seed_agent.dispatcher.usage import extract_usage
from seed_agent.dispatcher.workdir import JobWorkdir

logger = logging.getLogger(__name__)

STDERR_TAIL_CHARS = 2_000
TIMEOUT_EXIT_CODE = 124


class BackendRunError(RuntimeError):
    """Backend execution error; the message carries agent diagnostics."""

    def __init__(self, message: str, *, exit_code: int | None = None) -> None:
        super().__init__(message)
        self.exit_code = exit_code


class CliAgentBackend:
    """Run a CLI agent command template inside the job workdir."""

    def __init__(
        self,
        *,
        agent: str,
        model: str,
        command_template: str,
        no_tools_command_template: str | None = None,
        timeout_seconds: float = 600.0,
    ) -> None:
        self.agent = agent
        self.model = model
        self.command_template = command_template
        self.no_tools_command_template = no_tools_command_template
        self.timeout_seconds = timeout_seconds

    async def generate(self, request: GenerationRequest) -> BackendResponse:
        workdir = request.workdir
        if workdir is None:
            raise BackendRunError("CLI backend requires a job workdir.")
        workdir.write_prompts(prompt=request.prompt, system_prompt=request.system_prompt)

        template = self.command_template
        if not request.tools_enabled and self.no_tools_command_template:
            template = self.no_tools_command_template
        run_args = build_run_args(
            command_template=template,
            model=self.model,
            prompt=request.prompt,
            workdir=workdir,
        )

        env = os.environ.copy()
        env["SEED_AGENT_TOOLS_ENABLED"] = "1" if request.tools_enabled else "0"
        env["SEED_AGENT_WORKDIR"] = str(workdir.base_dir)
        env["SEED_AGENT_LLM_AGENT"] = self.agent
        env["SEED_AGENT_LLM_MODEL"] = self.model

        try:
            process = await asyncio.create_subprocess_exec(
                *run_args,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                env=env,
                cwd=str(workdir.base_dir),
            )
        except FileNotFoundError as error:
            raise BackendRunError(f"CLI backend command not found: {run_args[0]}") from error
        except OSError as error:
            raise BackendRunError(f"CLI backend failed to start: {error}") from error

        try:
            stdout_bytes, stderr_bytes = await asyncio.wait_for(
                process.communicate(),
                timeout=self.timeout_seconds,
            )
        except TimeoutError as error:
            await _terminate_process(process)
            raise BackendRunError(
                f"CLI backend timed out after {self.timeout_seconds:g}s",
                exit_code=TIMEOUT_EXIT_CODE,
            ) from error

        stdout = stdout_bytes.decode("utf-8", errors="replace")
        stderr = stderr_bytes.decode("utf-8", errors="replace")
        workdir.stdout_path.write_text(stdout, "utf-8")
        workdir.stderr_path.write_text(stderr, "utf-8")

        if process.returncode != 0:
            diagnostics = (stderr.strip() or stdout.strip())[-STDERR_TAIL_CHARS:]
            raise BackendRunError(
                f"CLI agent exited with code {process.returncode}: {diagnostics}",
                exit_code=process.returncode,
            )
        return _read_response(workdir=workdir, stdout=stdout, stderr=stderr)


def build_run_args(
    *,
    command_template: str,
    model: str,
    prompt: str,
    workdir: JobWorkdir,
) -> list[str]:
    """Render the command template into argv."""

    stripped = command_template.strip()
    if not stripped:
        raise BackendRunError("CLI backend command template is empty.")
    if "{prompt}" not in stripped and "{prompt_file}" not in stripped:
        raise BackendRunError(
            "CLI backend command template must include {prompt} or {prompt_file}.",
        )
    try:
        rendered = stripped.format(
            model=shlex.quote(model),
            prompt=shlex.quote(prompt),
            prompt_file=shlex.quote(str(workdir.prompt_path)),
            system_prompt_file=shlex.quote(str(workdir.system_prompt_path)),
            workdir=shlex.quote(str(workdir.base_dir)),
        )
    except KeyError as error:
        raise BackendRunError(f"Unsupported command template placeholder: {error}") from error

    argv = shlex.split(rendered)
    if not argv:
        raise BackendRunError("CLI backend command template rendered empty command.")
    return argv


def _read_response(*, workdir: JobWorkdir, stdout: str, stderr: str) -> BackendResponse:
    payload: dict[str, Any] = {}
    if workdir.result_path.exists():
        raw = workdir.result_path.read_text("utf-8")
        try:
            loaded = json.loads(raw)
        except json.JSONDecodeError as error:
            raise BackendRunError(f"Agent result is not valid JSON: {error}") from error
        if not isinstance(loaded, dict):
            raise BackendRunError("Agent result must be a JSON object.")
        payload = loaded

    steps = [_parse_step(item) for item in payload.get("steps") or () if isinstance(item, dict)]
    tool_calls = [
        _parse_tool_call(item) for item in payload.get("tool_calls") or () if isinstance(item, dict)
    ]
    if not tool_calls:
        tool_calls = [call for step in steps for call in step.tool_calls]

    text = payload["text"] if isinstance(payload.get("text"), str) else None
    if text is None and not payload:
        text = stdout.strip()

    return BackendResponse(
        text=text or "",
        steps=steps,
        tool_calls=tool_calls,
        usage=_parse_usage(payload.get("usage")) or extract_usage(stdout=stdout, stderr=stderr),
        artifacts=workdir.package_files(),
    )


def _parse_step(item: dict[str, Any]) -> GenerationStep:
    return GenerationStep(
        text=str(item.get("text") or ""),
        tool_calls=[
            _parse_tool_call(call)
            for call in item.get("tool_calls") or ()
            if isinstance(call, dict)
        ],
    )


def _parse_tool_call(item: dict[str, Any]) -> ToolCall:
    args = item.get("args")
    return ToolCall(
        name=str(item.get("name") or "unknown"),
        args=args if isinstance(args, dict) else {},
        result=item.get("result"),
    )


def _parse_usage(raw: object) -> GenerationUsage | None:
    if not isinstance(raw, dict):
        return None
    prompt = int(raw.get("prompt_tokens") or 0)
    completion = int(raw.get("completion_tokens") or 0)
    total = int(raw.get("total_tokens") or prompt + completion)
    return GenerationUsage(prompt_tokens=prompt, completion_tokens=completion, total_tokens=total)


async def _terminate_process(process: asyncio.subprocess.Process) -> None:
    try:
        process.terminate()
    except ProcessLookupError:
        return
    try:
        await asyncio.wait_for(process.wait(), timeout=2)
    except TimeoutError:
        try:
            process.kill()
        except ProcessLookupError:
            return
        await process.wait()
