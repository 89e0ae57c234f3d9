"""
Core data models for the attempt tracker.
"""
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional


class QuestionSetKind(Enum):
    """The two kinds of question-set a student can take."""
    TEST = "test"
    PRACTICE = "practice"


class QuestionType(Enum):
    """Question types served by the platform API."""
    MULTIPLE_CHOICE = "multiple_choice"
    MULTIPLE_SELECT = "multiple_select"
    TRUE_FALSE = "true_false"
    SHORT_ANSWER = "short_answer"


@dataclass(frozen=True)
class Question:
    """Represents a single server-supplied question. Never mutated locally."""
    id: str
    text: str
    question_type: QuestionType
    options: Dict[str, str] = field(default_factory=dict)
    order: int = 0
    points: int = 1
    correct_answer: Optional[str] = None

    @property
    def has_options(self) -> bool:
        return self.question_type in (
            QuestionType.MULTIPLE_CHOICE,
            QuestionType.MULTIPLE_SELECT,
            QuestionType.TRUE_FALSE,
        )


@dataclass
class QuestionSet:
    """A test or practice: an ordered, fixed list of questions."""
    id: str
    kind: QuestionSetKind
    title: str
    questions: List[Question]
    duration_seconds: Optional[int] = None
    description: str = ""

    @property
    def is_timed(self) -> bool:
        return bool(self.duration_seconds)


@dataclass(frozen=True)
class AnswerResult:
    """Correctness feedback returned by the server for one answer."""
    is_correct: bool
    correct_answer: str


@dataclass
class AnswerState:
    """The locally held answer for one question."""
    value: str = ""
    revealed: bool = False
    result: Optional[AnswerResult] = None
    saved: bool = True


@dataclass
class ReviewedAnswer:
    """One answer of a completed attempt, as returned for review."""
    question_id: str
    selected_answer: str
    is_correct: Optional[bool] = None
    shown_answer_at: Optional[str] = None
    question: Optional[Question] = None


@dataclass
class AttemptSummary:
    """Server computed totals for a completed attempt."""
    total: int = 0
    correct: int = 0
    wrong: int = 0
    score: float = 0.0
    is_passed: Optional[bool] = None
    score_visible: bool = True
    message: str = ""


@dataclass
class Attempt:
    """One student's run through a question-set."""
    id: str
    question_set_id: str
    started_at: int
    submitted_at: Optional[int] = None
    duration_seconds: Optional[int] = None
    answers: List[ReviewedAnswer] = field(default_factory=list)
    summary: Optional[AttemptSummary] = None

    @property
    def is_submitted(self) -> bool:
        return self.submitted_at is not None

    @property
    def is_timed(self) -> bool:
        return bool(self.duration_seconds)


@dataclass
class SessionRecord:
    """
    Durable mirror of an in-progress attempt, used to resume after a restart.

    Besides the attempt identity it carries the student's answers, flags and
    current question so a resumed attempt looks the way it was left.
    """
    question_set_id: str
    attempt_id: str
    started_at: int
    duration_seconds: Optional[int] = None
    answers: Dict[str, str] = field(default_factory=dict)
    flagged: List[str] = field(default_factory=list)
    current_index: int = 0

    def to_dict(self) -> dict:
        return {
            "questionSetId": self.question_set_id,
            "attemptId": self.attempt_id,
            "startedAt": self.started_at,
            "duration": self.duration_seconds,
            "answers": dict(self.answers),
            "flagged": list(self.flagged),
            "currentIndex": self.current_index,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "SessionRecord":
        """
        Build a record from its stored form.

        ``answers``, ``flagged`` and ``currentIndex`` are optional so records
        written without progress still load.

        Raises:
            ValueError: If a field is missing or has the wrong type
        """
        if not isinstance(data, dict):
            raise ValueError("Session record must be a JSON object")

        question_set_id = data.get("questionSetId")
        attempt_id = data.get("attemptId")
        started_at = data.get("startedAt")
        duration = data.get("duration")
        answers = data.get("answers") or {}
        flagged = data.get("flagged") or []
        current_index = data.get("currentIndex", 0)

        if not isinstance(question_set_id, str) or not question_set_id:
            raise ValueError("Session record missing 'questionSetId'")
        if not isinstance(attempt_id, str) or not attempt_id:
            raise ValueError("Session record missing 'attemptId'")
        if isinstance(started_at, bool) or not isinstance(started_at, int):
            raise ValueError("Session record missing 'startedAt'")
        if duration is not None and (isinstance(duration, bool) or not isinstance(duration, int)):
            raise ValueError("Session record 'duration' must be an integer")
        if not isinstance(answers, dict) or not all(
            isinstance(k, str) and isinstance(v, str) for k, v in answers.items()
        ):
            raise ValueError("Session record 'answers' must map question ids to strings")
        if not isinstance(flagged, list) or not all(isinstance(qid, str) for qid in flagged):
            raise ValueError("Session record 'flagged' must be a list of question ids")
        if isinstance(current_index, bool) or not isinstance(current_index, int):
            raise ValueError("Session record 'currentIndex' must be an integer")

        return cls(
            question_set_id=question_set_id,
            attempt_id=attempt_id,
            started_at=started_at,
            duration_seconds=duration or None,
            answers=answers,
            flagged=flagged,
            current_index=current_index,
        )


def toggle_choice(current: str, key: str) -> str:
    """Add or remove ``key`` from a comma separated multi-select answer."""
    selected = [part.strip() for part in current.split(",") if part.strip()] if current else []
    if key in selected:
        selected = [part for part in selected if part != key]
    else:
        selected.append(key)
    return ",".join(selected)


@dataclass
class ClientSettings:
    """Configuration for the API client and local session storage."""
    api_base_url: str = "http://localhost:5000/api"
    request_timeout: int = 30
    storage_directory: str = "./sessions/"
    storage_prefix: str = "test_session"
    resume_grace_seconds: int = 10
