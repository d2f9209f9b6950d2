"""Tests for model-name parsing and the retry wrapper."""

import pytest

from artifactflow.llm_client import (
    MaxRetryErrorsException,
    call_with_retries_sync,
    is_openai_model,
    parse_model_name,
)


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("gpt-5.1", ("gpt-5.1", {})),
        ("gpt-5.1_low", ("gpt-5.1", {"reasoning": {"effort": "low"}})),
        ("gpt-5.1_high_flex", ("gpt-5.1", {"reasoning": {"effort": "high"}, "service_tier": "flex"})),
    ],
)
def test_parse_model_name(raw, expected) -> None:
    assert parse_model_name(raw) == expected


def test_parse_model_name_rejects_unknown_option() -> None:
    with pytest.raises(ValueError):
        parse_model_name("gpt-5.1_turbo")
    with pytest.raises(ValueError):
        parse_model_name("  ")


def test_provider_detection() -> None:
    assert is_openai_model("gpt-4o")
    assert is_openai_model("o3-mini")
    assert not is_openai_model("gemini-2.5-flash-lite")


def test_retries_until_success() -> None:
    attempts = []

    def flaky():
        attempts.append(1)
        if len(attempts) < 3:
            raise RuntimeError("boom")
        return "ok"

    logged = []
    assert call_with_retries_sync(flaky, retries=3, log=logged.append) == "ok"
    assert len(attempts) == 3
    assert len(logged) == 2


def test_gives_up_after_retries() -> None:
    def broken():
        raise RuntimeError("boom")

    with pytest.raises(MaxRetryErrorsException) as exc:
        call_with_retries_sync(broken, retries=2)

    assert isinstance(exc.value.__cause__, RuntimeError)
