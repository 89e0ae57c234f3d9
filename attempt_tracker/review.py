"""
Review of completed attempts.
"""
import logging
from datetime import datetime
from typing import List, Optional

from .attempt_client import AttemptClient, AttemptClientError
from .models import Attempt, AttemptSummary, QuestionSetKind
from .notifications import Notifier

logger = logging.getLogger(__name__)


async def load_review(
    client: AttemptClient,
    notifier: Notifier,
    kind: QuestionSetKind,
    attempt_id: str
) -> Optional[Attempt]:
    """
    Fetch a completed attempt for the review screen.

    The review cannot be shown without data, so failures are reported to the
    student and None is returned; the caller then leaves the review screen.
    """
    try:
        return await client.fetch_completed(kind, attempt_id)
    except AttemptClientError as e:
        logger.error(f"Failed to load result for attempt {attempt_id}: {e}")
        await notifier.error(e.message or "Failed to load result")
        return None


def format_review_report(attempt: Attempt, title: str = "Practice") -> str:
    """Plain-text result sheet: summary followed by every question and answer."""
    summary = attempt.summary or AttemptSummary()
    submitted = (
        datetime.fromtimestamp(attempt.submitted_at / 1000).strftime("%Y-%m-%d %H:%M")
        if attempt.submitted_at else ""
    )
    lines: List[str] = [
        f"{title}",
        f"Submitted: {submitted}",
        "",
        "--- SUMMARY ---",
    ]
    if summary.score_visible:
        lines.append(f"Score: {summary.score:g}%")
    else:
        lines.append(summary.message or "Your score will be available after your teacher reviews and releases it.")
    lines.extend([
        f"Correct: {summary.correct}",
        f"Wrong: {summary.wrong}",
        f"Total: {summary.total}",
        "",
        "--- QUESTIONS & ANSWERS ---",
    ])

    for number, answer in enumerate(attempt.answers, start=1):
        question = answer.question
        lines.append("")
        lines.append(f"{number}. {question.text if question else ''}")
        lines.append(f"   Your answer: {answer.selected_answer}")
        if answer.is_correct is None:
            verdict = "Pending"
        else:
            verdict = "Yes" if answer.is_correct else "No"
        lines.append(f"   Correct: {verdict}")
        if question and question.correct_answer:
            lines.append(f"   Correct answer: {question.correct_answer}")
    return "\n".join(lines)
