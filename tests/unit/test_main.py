"""Unit tests for the lesson-extract command-line entry point."""

from __future__ import annotations

import json
from unittest.mock import AsyncMock, patch

from src.main import main
from src.schemas.generation import (
    AttemptOutcome,
    ConnectionCheck,
    ErrorKind,
    GenerationResult,
    Strictness,
    TerminalState,
)


def _result(success: bool) -> GenerationResult:
    return GenerationResult(
        success=success,
        state=TerminalState.SUCCEEDED if success else TerminalState.FAILED_FATAL,
        provider="groq",
        message="done" if success else "failed",
        error_kind=None if success else ErrorKind.MISSING_CREDENTIAL,
    )


def test_no_command_prints_help(capsys):
    assert main([]) == 0
    assert "lesson-extract" in capsys.readouterr().out


def test_generate_prints_result_json(capsys):
    with patch("src.main.LessonGenerationService") as mock_service:
        mock_service.return_value.generate_lesson = AsyncMock(return_value=_result(True))

        code = main(
            [
                "generate",
                "Phép biện chứng",
                "--provider",
                "groq",
                "--provider",
                "anthropic",
                "--strictness",
                "relaxed",
                "--questions",
                "5",
            ]
        )

    assert code == 0
    payload = json.loads(capsys.readouterr().out)
    assert payload["success"] is True
    assert payload["provider"] == "groq"
    mock_service.return_value.generate_lesson.assert_awaited_once_with(
        "Phép biện chứng",
        providers=["groq", "anthropic"],
        strictness=Strictness.RELAXED,
        question_count=5,
    )


def test_generate_failure_exit_code(capsys):
    with patch("src.main.LessonGenerationService") as mock_service:
        mock_service.return_value.generate_lesson = AsyncMock(return_value=_result(False))

        code = main(["generate", "Phép biện chứng"])

    assert code == 1
    assert json.loads(capsys.readouterr().out)["error_kind"] == "MissingCredential"


def test_generate_output_reports_total_attempts(capsys):
    attempts = [
        AttemptOutcome(attempt=n, provider="groq", error_kind=ErrorKind.TIMED_OUT, detail="slow")
        for n in (1, 2)
    ]
    result = _result(False).model_copy(update={"attempts": attempts})
    with patch("src.main.LessonGenerationService") as mock_service:
        mock_service.return_value.generate_lesson = AsyncMock(return_value=result)

        main(["generate", "Phép biện chứng"])

    payload = json.loads(capsys.readouterr().out)
    assert payload["total_attempts"] == 2
    assert len(payload["attempts"]) == 2


def test_check_prints_connection_check(capsys):
    check = ConnectionCheck(provider="groq", success=False, message="no key")
    with patch("src.main.LessonGenerationService") as mock_service:
        mock_service.return_value.check_connection = AsyncMock(return_value=check)

        code = main(["check", "--provider", "groq"])

    assert code == 1
    assert json.loads(capsys.readouterr().out)["message"] == "no key"
    mock_service.return_value.check_connection.assert_awaited_once_with("groq")
