"""Prompt assembly for JSON lesson generation.

Appends strict JSON formatting rules and the mandatory lesson structure to a
caller-supplied topic prompt, so the provider is asked for exactly the shape
the repair engine and validator expect.
"""

import json

_EXAMPLE_QUESTION = {
    "type": "multiple_choice",
    "content": "Question text",
    "options": [
        "A. Correct answer",
        "B. Wrong answer",
        "C. Wrong answer",
        "D. Wrong answer",
    ],
    "correctAnswer": "A. Correct answer",
    "score": 100,
    "timeLimit": 30,
}


def assemble_lesson_prompt(
    topic_prompt: str,
    question_count: int = 10,
    language: str = "Vietnamese",
) -> str:
    """Build the full user prompt for one lesson.

    Args:
        topic_prompt: Caller's description of the lesson topic.
        question_count: Number of questions to ask for.
        language: Language all lesson text must be written in.

    Returns:
        Prompt string ready for :class:`~src.schemas.generation.GenerationRequest`.

    Raises:
        ValueError: If ``topic_prompt`` is blank or ``question_count`` < 1.
    """
    if not topic_prompt or not topic_prompt.strip():
        raise ValueError("topic_prompt must be a non-empty string")
    if question_count < 1:
        raise ValueError("question_count must be at least 1")

    structure = json.dumps(
        {"title": f"Lesson title in {language}", "questions": [_EXAMPLE_QUESTION]},
        indent=2,
        ensure_ascii=False,
    )
    per_letter = max(1, question_count // 4)

    parts: list[str] = [
        topic_prompt.strip(),
        "",
        "## JSON FORMATTING REQUIREMENTS",
        "",
        "1. Return pure JSON only: no markdown blocks, no explanations, no extra text",
        "2. Start immediately with { and end with }",
        '3. Use only double quotes " for all strings',
        "4. No trailing commas anywhere in the JSON",
        '5. Escape special characters: \\" for quotes, \\\\ for backslashes',
        "6. Every correctAnswer must be one of the 4 options exactly",
        '7. Format options as: ["A. Option 1", "B. Option 2", "C. Option 3", "D. Option 4"]',
        '8. correctAnswer must match exactly: "A. Option 1" (not just "A")',
        "",
        "## MANDATORY STRUCTURE",
        "",
        structure,
        "",
        "## CHECKLIST BEFORE RESPONDING",
        "",
        f"- Exactly {question_count} questions",
        "- Each question has exactly 4 options starting with A., B., C., D.",
        "- correctAnswer matches one option exactly",
        f"- Answer distribution: about {per_letter} each of A, B, C and D",
        "- Valid JSON syntax (no trailing commas, proper quotes)",
        f"- All content in {language}",
        "",
        "GENERATE NOW:",
    ]
    return "\n".join(parts)
