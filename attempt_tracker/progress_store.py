"""
In-memory progress for the active attempt: answers, reveal flags and cursor.
"""
import logging
from typing import Dict, List, Optional, Set

from .models import AnswerResult, AnswerState


class ProgressStore:
    """
    Holds the client-side view of where the student is within an attempt.

    The store never talks to the network or to storage. At most one answer is
    kept per question, and revealing a question makes its answer final.
    """

    def __init__(self, question_ids: List[str], current_index: int = 0):
        """
        Initialize the store.

        Args:
            question_ids: Ordered question identifiers of the question-set
            current_index: Initial cursor position, clamped into range
        """
        self.logger = logging.getLogger(__name__)
        self._question_ids = list(question_ids)
        self._answers: Dict[str, AnswerState] = {}
        self._flagged: Set[str] = set()
        self._current_index = 0
        self.set_index(current_index)

    @property
    def question_ids(self) -> List[str]:
        return list(self._question_ids)

    @property
    def question_count(self) -> int:
        return len(self._question_ids)

    @property
    def current_index(self) -> int:
        return self._current_index

    @property
    def current_question_id(self) -> Optional[str]:
        if not self._question_ids:
            return None
        return self._question_ids[self._current_index]

    def set_index(self, index: int) -> int:
        """
        Move the cursor, clamping out-of-range requests into [0, N-1].

        Args:
            index: Requested question index

        Returns:
            The resulting cursor position
        """
        upper = max(self.question_count - 1, 0)
        self._current_index = min(max(int(index), 0), upper)
        return self._current_index

    def set_answer(self, question_id: str, value: str) -> bool:
        """
        Store the answer for a question, overwriting any prior value.

        Revealed answers are final: the call is a no-op for them.

        Returns:
            True if the value was stored, False if the question is revealed
        """
        state = self._answers.get(question_id)
        if state is not None and state.revealed:
            self.logger.debug(f"Ignoring answer for revealed question {question_id}")
            return False

        if state is None:
            state = AnswerState()
            self._answers[question_id] = state

        if state.value != value:
            state.value = value
            state.saved = False
        return True

    def get_answer(self, question_id: str) -> str:
        """Return the current value, or an empty string when unanswered."""
        state = self._answers.get(question_id)
        return state.value if state is not None else ""

    def mark_revealed(self, question_id: str, is_correct: bool, correct_answer: str) -> None:
        """Record server feedback for a question. Repeated calls keep the first result."""
        state = self._answers.setdefault(question_id, AnswerState())
        if state.revealed:
            return
        state.revealed = True
        state.saved = True
        state.result = AnswerResult(is_correct=is_correct, correct_answer=correct_answer)

    def is_revealed(self, question_id: str) -> bool:
        state = self._answers.get(question_id)
        return state is not None and state.revealed

    def get_result(self, question_id: str) -> Optional[AnswerResult]:
        state = self._answers.get(question_id)
        return state.result if state is not None else None

    def has_unsaved(self, question_id: str) -> bool:
        state = self._answers.get(question_id)
        return state is not None and not state.saved

    def mark_saved(self, question_id: str, value: str) -> None:
        """Clear the unsaved flag, but only if ``value`` is still the stored value."""
        state = self._answers.get(question_id)
        if state is not None and state.value == value:
            state.saved = True

    def mark_unsaved(self, question_id: str, value: str) -> None:
        """Re-flag an answer after a failed save, unless it changed meanwhile."""
        state = self._answers.get(question_id)
        if state is not None and state.value == value and not state.revealed:
            state.saved = False

    def restore(self, answers: Dict[str, str], flagged: List[str]) -> None:
        """
        Seed answers and flags from a stored session record.

        Ids that are not part of this question-set are dropped. Restored
        answers count as unsaved, since the last save before the record was
        written may never have reached the server.
        """
        known = set(self._question_ids)
        for question_id, value in answers.items():
            if question_id in known and value:
                self.set_answer(question_id, value)
        self._flagged.update(qid for qid in flagged if qid in known)

    @property
    def unsaved(self) -> List[str]:
        """Question ids with an answer not yet persisted, in question order."""
        return [qid for qid in self._question_ids if self.has_unsaved(qid)]

    def toggle_flag(self, question_id: str) -> bool:
        """Flag or unflag a question for later review. Returns the new flag."""
        if question_id in self._flagged:
            self._flagged.discard(question_id)
            return False
        self._flagged.add(question_id)
        return True

    def is_flagged(self, question_id: str) -> bool:
        return question_id in self._flagged

    @property
    def flagged(self) -> List[str]:
        return [qid for qid in self._question_ids if qid in self._flagged]

    @property
    def answered_count(self) -> int:
        return sum(1 for state in self._answers.values() if state.value)

    @property
    def unanswered_count(self) -> int:
        return self.question_count - self.answered_count

    @property
    def progress_percent(self) -> float:
        if not self._question_ids:
            return 0.0
        return (self.answered_count / self.question_count) * 100

    def snapshot(self) -> Dict[str, str]:
        """Answers keyed by question id, for status output and logging."""
        return {qid: state.value for qid, state in self._answers.items() if state.value}
