"""Deterministic generation failure classification for the retry policy."""

from __future__ import annotations

from dataclasses import dataclass

GENERATION_FAILURE_CLASSIFIER_VERSION = 1
MAX_CAUSE_DEPTH = 16

# Malformed tool invocations from the model: worth another attempt.
_TOOL_ARGUMENT_PATTERNS: tuple[str, ...] = (
    "invalidtoolarguments",
    "invalid tool arguments",
    "invalid arguments for tool",
    "tool call arguments",
    "failed to parse tool",
    "tool_use_failed",
    "nosuchtool",
)
_JSON_PARSE_PATTERNS: tuple[str, ...] = (
    "jsonparseerror",
    "jsondecodeerror",
    "json parsing failed",
    "json parse error",
    "failed to parse json",
    "invalid json",
    "unexpected end of json",
    "unterminated string",
    "expecting property name",
)


class GenerationError(RuntimeError):
    """Generation failed after the retry policy gave up."""

    def __init__(
        self,
        message: str,
        *,
        retryable: bool,
        attempts: int,
        classification: GenerationFailureClassification | None = None,
    ) -> None:
        super().__init__(message)
        self.retryable = retryable
        self.attempts = attempts
        self.classification = classification


@dataclass(slots=True)
class GenerationFailureClassification:
    """Normalized failure classification result."""

    retryable: bool
    reason_code: str
    matched_rule: str
    matched_pattern: str | None
    cause_depth: int

    def to_event_details(self) -> dict[str, object]:
        return {
            "classifier_version": GENERATION_FAILURE_CLASSIFIER_VERSION,
            "retryable": self.retryable,
            "reason_code": self.reason_code,
            "matched_rule": self.matched_rule,
            "matched_pattern": self.matched_pattern,
            "cause_depth": self.cause_depth,
        }


def classify_generation_failure(error: BaseException) -> GenerationFailureClassification:
    """Classify an exception and, recursively, the errors it wraps."""

    seen: set[int] = set()
    current: BaseException | None = error
    depth = 0
    while current is not None and id(current) not in seen and depth <= MAX_CAUSE_DEPTH:
        seen.add(id(current))
        haystack = _normalize_text(current)

        pattern = _first_match(haystack, _TOOL_ARGUMENT_PATTERNS)
        if pattern is not None:
            return GenerationFailureClassification(
                retryable=True,
                reason_code="tool_arguments_invalid",
                matched_rule="tool_arguments",
                matched_pattern=pattern,
                cause_depth=depth,
            )

        pattern = _first_match(haystack, _JSON_PARSE_PATTERNS)
        if pattern is not None:
            return GenerationFailureClassification(
                retryable=True,
                reason_code="tool_output_json_invalid",
                matched_rule="json_parse",
                matched_pattern=pattern,
                cause_depth=depth,
            )

        current = current.__cause__ or current.__context__
        depth += 1

    return GenerationFailureClassification(
        retryable=False,
        reason_code="backend_non_retryable",
        matched_rule="fallback_non_retryable",
        matched_pattern=None,
        cause_depth=0,
    )


def _normalize_text(error: BaseException) -> str:
    return f"{type(error).__name__}\n{error}".lower()


def _first_match(haystack: str, patterns: tuple[str, ...]) -> str | None:
    for pattern in patterns:
        if pattern in haystack:
            return pattern
    return None
