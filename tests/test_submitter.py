from __future__ import annotations

import asyncio
from pathlib import Path

import allure
from conftest import FakeJobSource, make_job

from seed_agent.dispatcher.models import Artifact, GenerationResult
from seed_agent.dispatcher.submitter import ResultSubmitter, is_already_submitted
from seed_agent.marketplace.base import MarketplaceError

pytestmark = [
    allure.epic("Job Dispatch"),
    allure.feature("Result Submission"),
]


def _result_with_artifact(tmp_path: Path) -> GenerationResult:
    archive = tmp_path / "job-1.zip"
    archive.write_bytes(b"PK\x05\x06" + b"\x00" * 18)
    return GenerationResult(
        text="Here is your site.",
        artifacts=[Artifact(path=archive, size_bytes=archive.stat().st_size)],
    )


def test_text_only_result_uses_plain_endpoint() -> None:
    source = FakeJobSource()

    receipt = asyncio.run(
        ResultSubmitter(source).submit(
            make_job("job-1"),
            GenerationResult(text="answer"),
            use_alternate_endpoint=False,
        ),
    )

    assert source.submissions[0]["endpoint"] == "v1_text"
    assert receipt.with_artifacts is False
    assert receipt.response_id == "resp-1"


def test_artifacts_are_uploaded_before_submission(tmp_path: Path) -> None:
    source = FakeJobSource()
    result = _result_with_artifact(tmp_path)

    receipt = asyncio.run(
        ResultSubmitter(source).submit(make_job("job-1"), result, use_alternate_endpoint=False),
    )

    assert source.uploaded == [result.artifacts[0].path]
    assert source.submissions[0]["endpoint"] == "v1_files"
    assert source.submissions[0]["artifacts"][0].name == "job-1.zip"
    assert receipt.with_artifacts is True


def test_upload_failure_degrades_to_text_only(tmp_path: Path) -> None:
    source = FakeJobSource()
    source.upload_error = MarketplaceError("Upload failed: 503", status_code=503)

    receipt = asyncio.run(
        ResultSubmitter(source).submit(
            make_job("job-1"),
            _result_with_artifact(tmp_path),
            use_alternate_endpoint=False,
        ),
    )

    assert source.submissions[0]["endpoint"] == "v1_text"
    assert source.submissions[0]["text"] == "Here is your site."
    assert receipt.with_artifacts is False


def test_alternate_endpoint_is_used_for_shared_jobs(tmp_path: Path) -> None:
    source = FakeJobSource()

    receipt = asyncio.run(
        ResultSubmitter(source).submit(
            make_job("job-1"),
            _result_with_artifact(tmp_path),
            use_alternate_endpoint=True,
        ),
    )

    assert source.submissions[0]["endpoint"] == "v2"
    assert receipt.alternate_endpoint is True
    assert receipt.with_artifacts is True


def test_already_submitted_response_is_not_an_error() -> None:
    source = FakeJobSource()
    source.submit_error = MarketplaceError("You already submitted a response", status_code=400)

    receipt = asyncio.run(
        ResultSubmitter(source).submit(
            make_job("job-1"),
            GenerationResult(text="answer"),
            use_alternate_endpoint=False,
        ),
    )

    assert receipt.already_submitted is True
    assert receipt.response_id is None


def test_already_submitted_detection() -> None:
    assert is_already_submitted(MarketplaceError("conflict", status_code=409))
    assert is_already_submitted(MarketplaceError("Duplicate response for job"))
    assert not is_already_submitted(MarketplaceError("Job expired", status_code=410))
