"""
Lesson Schema Validator: hard structural checks plus soft quality checks.

Hard checks (a failure makes the whole generation fail with SchemaViolation):
  a) required_fields       title is a non-empty string, questions is a list
  b) question_structure    content, exactly 4 options, correctAnswer present

Soft checks (WARNING only; the lesson is still returned):
  c) question_count        number of questions equals the configured target
  d) answer_consistency    correctAnswer equals one option text exactly
  e) answer_distribution   A–D answer letters are not all the same
  f) option_uniqueness     the 4 options of a question are distinct
  g) question_fields       score and timeLimit are usable whole numbers

Never raises unhandled exceptions; it always returns a ValidationReport.
"""

import logging
import re
from dataclasses import asdict, dataclass, field
from typing import Any

from pydantic import ValidationError as PydanticValidationError

from src.exceptions import SchemaViolationError
from src.schemas.lesson import LessonSchema, Question
from src.schemas.validation import (
    ValidationCheck,
    ValidationReportModel,
    ValidationWarning,
)

logger = logging.getLogger(__name__)

REQUIRED_OPTION_COUNT = 4
DEFAULT_SCORE = 100
DEFAULT_TIME_LIMIT = 30
_LETTERS = "ABCD"
_LETTER_PREFIX_RE = re.compile(r"^\s*([A-Da-d])[.)\-\s]")
_STRIP_PREFIX_RE = re.compile(r"^\s*[A-Da-d][.)\-]\s*")


# ---------------------------------------------------------------------------
# Data classes for validation results
# ---------------------------------------------------------------------------

@dataclass
class CheckResult:
    name: str
    status: str  # "passed", "failed", "warning"
    details: dict[str, Any] = field(default_factory=dict)
    message: str = ""

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class ValidationReport:
    passed: bool = True
    checks: list[CheckResult] = field(default_factory=list)
    warnings: list[dict[str, Any]] = field(default_factory=list)
    errors: list[dict[str, Any]] = field(default_factory=list)
    overall_score: float = 1.0

    def add_check(self, check: CheckResult) -> None:
        self.checks.append(check)
        if check.status == "failed":
            self.passed = False
            self.errors.append({
                "type": check.name,
                "message": check.message,
                "severity": "high",
            })
        elif check.status == "warning":
            self.warnings.append({
                "type": check.name,
                "message": check.message,
                "severity": "low",
            })

    def compute_score(self) -> None:
        if not self.checks:
            self.overall_score = 0.0
            return
        total = len(self.checks)
        passed = sum(1 for c in self.checks if c.status == "passed")
        warned = sum(1 for c in self.checks if c.status == "warning")
        self.overall_score = round((passed + warned * 0.5) / total, 2)

    def to_dict(self) -> dict[str, Any]:
        return {
            "passed": self.passed,
            "checks": [c.to_dict() for c in self.checks],
            "warnings": self.warnings,
            "errors": self.errors,
            "overall_score": self.overall_score,
        }

    def error_messages(self) -> list[str]:
        return [e["message"] for e in self.errors]

    def to_schema(self) -> ValidationReportModel:
        """Convert this dataclass report to the Pydantic response schema."""
        return ValidationReportModel(
            passed=self.passed,
            checks=[
                ValidationCheck(
                    name=c.name, status=c.status, details=c.details, message=c.message
                )
                for c in self.checks
            ],
            warnings=[ValidationWarning(**w) for w in self.warnings],
            errors=self.error_messages(),
            overall_score=self.overall_score,
        )


# ---------------------------------------------------------------------------
# Helper utilities
# ---------------------------------------------------------------------------

def _is_blank(value: Any) -> bool:
    """True for None, booleans, empty/whitespace strings and empty containers."""
    if value is None or isinstance(value, bool):
        return True
    if isinstance(value, str):
        return not value.strip()
    if isinstance(value, (list, dict)):
        return not value
    return False


def _questions(lesson_data: dict) -> list[Any]:
    questions = lesson_data.get("questions")
    return questions if isinstance(questions, list) else []


def _whole_number(value: Any, minimum: int) -> int | None:
    """Return ``value`` as an int when it is a whole number >= ``minimum``."""
    if isinstance(value, bool):
        return None
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    elif isinstance(value, str) and value.strip().isdecimal():
        value = int(value.strip())
    if isinstance(value, int) and value >= minimum:
        return value
    return None


# (key, default, minimum) for numeric question fields with a fallback value
_NUMERIC_FIELDS = (
    ("score", DEFAULT_SCORE, 0),
    ("timeLimit", DEFAULT_TIME_LIMIT, 1),
)


def _numeric_field(question: dict, key: str, default: int, minimum: int) -> int:
    if key not in question:
        return default
    value = _whole_number(question[key], minimum)
    return default if value is None else value


def _explanation(value: Any) -> str | None:
    if value is None:
        return None
    text = value.strip() if isinstance(value, str) else str(value)
    return text or None


def _strip_letter_prefix(text: str) -> str:
    return _STRIP_PREFIX_RE.sub("", text).strip().lower()


def resolve_answer_letter(question: dict) -> str | None:
    """Map a question's correctAnswer to its option letter (A–D).

    Accepts a bare letter (``"B"``), a letter prefix (``"B. Matter"``) or the
    full option text. Returns ``None`` when the answer cannot be resolved.
    """
    answer = question.get("correctAnswer")
    options = question.get("options")
    if not isinstance(answer, str) or not answer.strip():
        return None
    answer = answer.strip()

    if len(answer) == 1 and answer.upper() in _LETTERS:
        return answer.upper()

    prefix = _LETTER_PREFIX_RE.match(answer)
    if prefix:
        return prefix.group(1).upper()

    if isinstance(options, list):
        target = _strip_letter_prefix(answer)
        for index, option in enumerate(options[:REQUIRED_OPTION_COUNT]):
            if isinstance(option, str) and _strip_letter_prefix(option) == target:
                return _LETTERS[index]
    return None


# ---------------------------------------------------------------------------
# LessonValidator
# ---------------------------------------------------------------------------

class LessonValidator:
    """
    Validates a parsed lesson object.

    Hard checks: required_fields, question_structure.
    Soft checks: question_count, answer_consistency, answer_distribution,
    option_uniqueness, question_fields.
    """

    def validate(
        self,
        lesson_data: dict[str, Any],
        target_question_count: int = 10,
    ) -> ValidationReport:
        """
        Run all checks and return a ValidationReport.
        Never raises; all exceptions caught and reported.
        """
        report = ValidationReport()

        checks = [
            ("required_fields", self.required_fields_check),
            ("question_structure", self.question_structure_check),
            ("question_count", self.question_count_check),
            ("answer_consistency", self.answer_consistency_check),
            ("answer_distribution", self.answer_distribution_check),
            ("option_uniqueness", self.option_uniqueness_check),
            ("question_fields", self.question_fields_check),
        ]

        if not isinstance(lesson_data, dict):
            report.add_check(CheckResult(
                name="required_fields",
                status="failed",
                details={"type": type(lesson_data).__name__},
                message="Lesson must be a JSON object.",
            ))
            report.compute_score()
            return report

        for check_name, check_fn in checks:
            try:
                result = check_fn(
                    lesson_data=lesson_data,
                    target_question_count=target_question_count,
                )
                report.add_check(result)
            except Exception as exc:
                logger.error("Validation check '%s' raised: %s", check_name, exc)
                report.add_check(CheckResult(
                    name=check_name,
                    status="failed",
                    details={"error": str(exc)},
                    message=f"Internal error in {check_name}: {exc}",
                ))

        for warning in report.warnings:
            logger.warning("Lesson warning [%s]: %s", warning["type"], warning["message"])

        report.compute_score()
        return report

    def build_lesson(self, lesson_data: dict[str, Any]) -> LessonSchema:
        """Build the typed lesson from data that passed the hard checks.

        Question order is preserved. Non-string answers, options and
        explanations are converted to strings; a missing or unusable
        ``score`` / ``timeLimit`` falls back to its default (reported by
        ``question_fields_check``).

        Raises:
            SchemaViolationError: If the data does not fit the lesson schema.
        """
        try:
            questions = [
                Question(
                    type=str(q.get("type") or "multiple_choice"),
                    content=str(q["content"]).strip(),
                    options=[str(o) for o in q["options"]],
                    correct_answer=str(q["correctAnswer"]).strip(),
                    score=_numeric_field(q, "score", DEFAULT_SCORE, 0),
                    time_limit=_numeric_field(q, "timeLimit", DEFAULT_TIME_LIMIT, 1),
                    explanation=_explanation(q.get("explanation")),
                )
                for q in _questions(lesson_data)
            ]
            return LessonSchema(title=str(lesson_data["title"]).strip(), questions=questions)
        except (KeyError, TypeError, PydanticValidationError) as exc:
            raise SchemaViolationError(
                f"Lesson does not match schema: {exc}", violations=[str(exc)]
            ) from exc

    # ------------------------------------------------------------------
    # CHECK a) Required fields (hard)
    # ------------------------------------------------------------------

    def required_fields_check(self, lesson_data: dict, **_kwargs) -> CheckResult:
        """title must be a non-empty string; questions must be a list."""
        issues: list[str] = []
        title = lesson_data.get("title")
        if "title" not in lesson_data:
            issues.append("missing 'title'")
        elif not isinstance(title, str) or not title.strip():
            issues.append("'title' must be a non-empty string")

        if "questions" not in lesson_data:
            issues.append("missing 'questions'")
        elif not isinstance(lesson_data["questions"], list):
            issues.append("'questions' must be a list")

        details = {"issues": issues}
        if issues:
            return CheckResult(
                name="required_fields",
                status="failed",
                details=details,
                message=f"Lesson structure invalid: {'; '.join(issues)}.",
            )
        return CheckResult(name="required_fields", status="passed", details=details)

    # ------------------------------------------------------------------
    # CHECK b) Question structure (hard)
    # ------------------------------------------------------------------

    def question_structure_check(self, lesson_data: dict, **_kwargs) -> CheckResult:
        """
        Every question: non-empty content, options list of exactly 4,
        non-empty correctAnswer.
        """
        questions = _questions(lesson_data)
        issues: list[str] = []

        for i, q in enumerate(questions, start=1):
            if not isinstance(q, dict):
                issues.append(f"Q{i}: not an object")
                continue
            if _is_blank(q.get("content")):
                issues.append(f"Q{i}: empty content")
            options = q.get("options")
            if not isinstance(options, list):
                issues.append(f"Q{i}: options missing")
            elif len(options) != REQUIRED_OPTION_COUNT:
                issues.append(
                    f"Q{i}: has {len(options)} options, expected {REQUIRED_OPTION_COUNT}"
                )
            if _is_blank(q.get("correctAnswer")):
                issues.append(f"Q{i}: empty correctAnswer")

        details = {
            "questions_checked": len(questions),
            "issues": issues[:10],
            "issues_count": len(issues),
        }
        if issues:
            return CheckResult(
                name="question_structure",
                status="failed",
                details=details,
                message=f"Invalid question structure: {issues[:3]}",
            )
        return CheckResult(name="question_structure", status="passed", details=details)

    # ------------------------------------------------------------------
    # CHECK c) Question count (soft)
    # ------------------------------------------------------------------

    def question_count_check(
        self, lesson_data: dict, target_question_count: int = 10, **_kwargs
    ) -> CheckResult:
        count = len(_questions(lesson_data))
        details = {"expected": target_question_count, "actual": count}
        if count != target_question_count:
            return CheckResult(
                name="question_count",
                status="warning",
                details=details,
                message=f"Expected {target_question_count} questions, got {count}.",
            )
        return CheckResult(name="question_count", status="passed", details=details)

    # ------------------------------------------------------------------
    # CHECK d) Answer consistency (soft)
    # ------------------------------------------------------------------

    def answer_consistency_check(self, lesson_data: dict, **_kwargs) -> CheckResult:
        """correctAnswer should equal exactly one option text."""
        mismatches: list[str] = []
        for i, q in enumerate(_questions(lesson_data), start=1):
            if not isinstance(q, dict) or not isinstance(q.get("options"), list):
                continue
            answer = q.get("correctAnswer")
            matches = sum(1 for option in q["options"] if option == answer)
            if matches != 1:
                mismatches.append(f"Q{i}: correctAnswer {answer!r} not found in options")

        details = {"mismatches": mismatches[:10], "mismatch_count": len(mismatches)}
        if mismatches:
            return CheckResult(
                name="answer_consistency",
                status="warning",
                details=details,
                message=f"{len(mismatches)} answer(s) do not match an option: {mismatches[:3]}",
            )
        return CheckResult(name="answer_consistency", status="passed", details=details)

    # ------------------------------------------------------------------
    # CHECK e) Answer distribution (soft)
    # ------------------------------------------------------------------

    def answer_distribution_check(self, lesson_data: dict, **_kwargs) -> CheckResult:
        """
        Count answer letters A–D across questions.
        Warn when every resolvable answer is the same letter (4+ questions)
        or when some answers cannot be resolved to a letter.
        """
        distribution = {letter: 0 for letter in _LETTERS}
        distribution["Unknown"] = 0
        questions = [q for q in _questions(lesson_data) if isinstance(q, dict)]
        for q in questions:
            distribution[resolve_answer_letter(q) or "Unknown"] += 1

        resolved = sum(distribution[letter] for letter in _LETTERS)
        dominant = [letter for letter in _LETTERS if distribution[letter] == resolved]
        details = {"distribution": distribution, "resolved": resolved}

        if resolved >= 4 and dominant:
            return CheckResult(
                name="answer_distribution",
                status="warning",
                details=details,
                message=f"All {resolved} answers are option {dominant[0]}.",
            )
        if distribution["Unknown"]:
            return CheckResult(
                name="answer_distribution",
                status="warning",
                details=details,
                message=f"{distribution['Unknown']} answer(s) could not be mapped to A–D.",
            )
        return CheckResult(name="answer_distribution", status="passed", details=details)

    # ------------------------------------------------------------------
    # CHECK f) Option uniqueness (soft)
    # ------------------------------------------------------------------

    def option_uniqueness_check(self, lesson_data: dict, **_kwargs) -> CheckResult:
        duplicates: list[str] = []
        for i, q in enumerate(_questions(lesson_data), start=1):
            if not isinstance(q, dict) or not isinstance(q.get("options"), list):
                continue
            cleaned = [
                _strip_letter_prefix(o) for o in q["options"] if isinstance(o, str)
            ]
            non_empty = [o for o in cleaned if o]
            if len(set(non_empty)) < len(q["options"]):
                duplicates.append(f"Q{i}")

        details = {"questions_with_duplicates": duplicates}
        if duplicates:
            return CheckResult(
                name="option_uniqueness",
                status="warning",
                details=details,
                message=f"Options are repeated or empty in {duplicates[:5]}",
            )
        return CheckResult(name="option_uniqueness", status="passed", details=details)

    # ------------------------------------------------------------------
    # CHECK g) Numeric question fields (soft)
    # ------------------------------------------------------------------

    def question_fields_check(self, lesson_data: dict, **_kwargs) -> CheckResult:
        """score and timeLimit, when present, should be usable whole numbers."""
        replaced: list[str] = []
        for i, q in enumerate(_questions(lesson_data), start=1):
            if not isinstance(q, dict):
                continue
            for key, default, minimum in _NUMERIC_FIELDS:
                if key in q and _whole_number(q[key], minimum) is None:
                    replaced.append(f"Q{i}: {key} {q[key]!r} replaced by {default}")

        details = {"replaced": replaced[:10], "replaced_count": len(replaced)}
        if replaced:
            return CheckResult(
                name="question_fields",
                status="warning",
                details=details,
                message=f"{len(replaced)} field value(s) replaced by defaults: {replaced[:3]}",
            )
        return CheckResult(name="question_fields", status="passed", details=details)
