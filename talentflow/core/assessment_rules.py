"""Answer rules for assessment submissions: conditional visibility and per-question checks."""

from typing import Any

from talentflow.core.schemas import Assessment, AssessmentQuestion, QuestionType


def _is_blank(answer: Any) -> bool:
    if answer is None:
        return True
    if isinstance(answer, str):
        return answer.strip() == ""
    if isinstance(answer, (list, tuple, set, dict)):
        return len(answer) == 0
    return False


def is_visible(question: AssessmentQuestion, answers: dict[str, Any]) -> bool:
    """A question without conditional logic is always shown.

    A list condition shows the question when any listed value was picked in a
    multi-choice answer; a scalar condition needs an exact match.
    """
    if question.conditional_logic is None:
        return True
    show_if = question.conditional_logic.show_if
    dependent = answers.get(show_if.question_id)
    if isinstance(show_if.answer, list):
        return isinstance(dependent, list) and any(a in dependent for a in show_if.answer)
    return dependent == show_if.answer


def visible_questions(
    assessment: Assessment,
    answers: dict[str, Any],
) -> list[AssessmentQuestion]:
    sections = sorted(assessment.sections, key=lambda s: s.order)
    return [
        q
        for section in sections
        for q in section.questions
        if is_visible(q, answers)
    ]


def check_answer(question: AssessmentQuestion, answer: Any) -> str | None:
    """Return an error message for one answer, or None when it is acceptable."""
    if _is_blank(answer):
        return "This field is required" if question.required else None

    rules = question.validation
    if question.type == QuestionType.NUMERIC:
        try:
            value = float(answer)
        except (TypeError, ValueError):
            return "Must be a valid number"
        if rules is not None and rules.min is not None and value < rules.min:
            return f"Must be at least {rules.min:g}"
        if rules is not None and rules.max is not None and value > rules.max:
            return f"Must be at most {rules.max:g}"

    if question.type == QuestionType.SHORT_TEXT and rules is not None and rules.max_length:
        if len(str(answer)) > rules.max_length:
            return f"Must be at most {rules.max_length} characters"

    if question.type == QuestionType.SINGLE_CHOICE and question.options:
        if answer not in question.options:
            return "Must be one of the listed options"

    if question.type == QuestionType.MULTI_CHOICE and question.options:
        if not isinstance(answer, list) or any(a not in question.options for a in answer):
            return "Must be a selection of the listed options"

    return None


def validate_answers(assessment: Assessment, answers: dict[str, Any]) -> dict[str, str]:
    """Check every visible question. Hidden questions are never validated."""
    errors: dict[str, str] = {}
    for question in visible_questions(assessment, answers):
        error = check_answer(question, answers.get(question.id))
        if error is not None:
            errors[question.id] = error
    return errors
