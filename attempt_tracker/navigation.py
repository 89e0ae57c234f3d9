"""
Navigation controller for taking a test or practice.

Sequences the student through the questions of one attempt and decides when
answers are saved, revealed and finally submitted.
"""
import asyncio
import inspect
import logging
import time
from enum import Enum
from typing import Any, Callable, Optional, Set

from .attempt_client import AttemptClient, AttemptClientError, SubmissionError
from .models import AnswerResult, Question, QuestionSet, QuestionSetKind, QuestionType, SessionRecord, toggle_choice
from .notifications import Notifier
from .persistence import PersistenceBridge
from .progress_store import ProgressStore
from .timer import AttemptTimer


class NavigationState(Enum):
    """Lifecycle of a test-taking screen."""
    LOADING = "loading"
    READY = "ready"
    SUBMITTING = "submitting"
    DONE = "done"
    FAILED = "failed"
    CANCELLED = "cancelled"


class NavigationError(Exception):
    """Base exception for navigation controller errors."""
    pass


class InvalidNavigationStateError(NavigationError):
    """Raised when the controller is in the wrong state for the requested action."""
    pass


class NavigationController:
    """
    Drives one attempt from loading to submission.

    Moving between questions never waits for the network: the answer being
    left is saved by a background task whose failure is only logged. Reveal
    and submit are awaited because the student asked for their outcome.
    """

    def __init__(
        self,
        client: AttemptClient,
        kind: QuestionSetKind,
        question_set_id: str,
        persistence: Optional[PersistenceBridge] = None,
        notifier: Optional[Notifier] = None,
        on_done: Optional[Callable[[str], Any]] = None,
        clock: Callable[[], float] = time.time,
        timer_tick_seconds: float = 1.0
    ):
        """
        Initialize the controller.

        Args:
            client: API client for the attempt lifecycle
            kind: Whether this is a test or a practice
            question_set_id: Identifier of the test or practice
            persistence: Local session record bridge, used to resume timed attempts
            notifier: Sink for user-facing notifications
            on_done: Called with the attempt id after a successful submission
            clock: Wall clock returning epoch seconds
            timer_tick_seconds: Countdown resolution for timed attempts
        """
        self.logger = logging.getLogger(__name__)
        self.client = client
        self.kind = kind
        self.question_set_id = question_set_id
        self.persistence = persistence
        self.notifier = notifier or Notifier()
        self.on_done = on_done
        self._clock = clock
        self._timer_tick = timer_tick_seconds

        self.state = NavigationState.LOADING
        self.question_set: Optional[QuestionSet] = None
        self.store: Optional[ProgressStore] = None
        self.attempt_id: Optional[str] = None
        self.started_at: Optional[int] = None
        self.resumed = False
        self.timer: Optional[AttemptTimer] = None
        self._record: Optional[SessionRecord] = None

        self._background_tasks: Set[asyncio.Task] = set()
        self._reveal_pending: Set[str] = set()

    # ------------------------------------------------------------------
    # Loading
    # ------------------------------------------------------------------

    async def load(self) -> bool:
        """
        Fetch the question-set and start or resume the attempt.

        The local session record is consulted here and nowhere else.

        Returns:
            True if the controller is READY, False if loading failed
        """
        if self.state is not NavigationState.LOADING:
            raise InvalidNavigationStateError(f"Cannot load from state {self.state.value}")

        try:
            question_set = await self.client.fetch_question_set(self.kind, self.question_set_id)
        except AttemptClientError as e:
            self.logger.error(f"Failed to load {self.kind.value} {self.question_set_id}: {e}")
            await self.notifier.error(e.message or f"Failed to load {self.kind.value}")
            self.state = NavigationState.FAILED
            return False

        if not question_set.questions:
            await self.notifier.info(f"No questions in this {self.kind.value}.")
            self.state = NavigationState.FAILED
            return False

        self.question_set = question_set
        record = self._restore_record()
        current_ms = int(self._clock() * 1000)

        if record is not None:
            self.attempt_id = record.attempt_id
            self.started_at = record.started_at
            self.resumed = True
            if record.duration_seconds:
                question_set.duration_seconds = record.duration_seconds
        else:
            try:
                attempt = await self.client.start(self.kind, self.question_set_id)
            except AttemptClientError as e:
                self.logger.error(f"Failed to start {self.kind.value} {self.question_set_id}: {e}")
                await self.notifier.error(e.message or f"Failed to start {self.kind.value}")
                self.state = NavigationState.FAILED
                return False
            self.attempt_id = attempt.id
            self.started_at = current_ms
            if question_set.is_timed:
                record = SessionRecord(
                    question_set_id=self.question_set_id,
                    attempt_id=attempt.id,
                    started_at=self.started_at,
                    duration_seconds=question_set.duration_seconds,
                )
                self._save_record(record)

        self.store = ProgressStore([q.id for q in question_set.questions])
        if record is not None:
            self.store.restore(record.answers, record.flagged)
            self.store.set_index(record.current_index)
        self._record = record
        self.state = NavigationState.READY

        self.logger.info(
            f"{'Resumed' if self.resumed else 'Started'} attempt {self.attempt_id} "
            f"on {self.kind.value} {self.question_set_id}, questions={self.question_count}",
            extra={
                'event_type': 'attempt_resumed' if self.resumed else 'attempt_ready',
                'attempt_id': self.attempt_id,
                'question_set_id': self.question_set_id,
                'timed': question_set.is_timed,
                'timestamp': time.time()
            }
        )

        if question_set.is_timed:
            self.timer = AttemptTimer(
                self.attempt_id,
                self.started_at,
                question_set.duration_seconds,
                clock=self._clock,
                tick_seconds=self._timer_tick,
            )
            self.timer.start(self._on_time_up)

        if self.resumed:
            await self.notifier.info(f"Resumed your {self.kind.value} where you left off.")
        else:
            await self.notifier.success(f"{self.kind.value.capitalize()} started!")
        return True

    def _restore_record(self) -> Optional[SessionRecord]:
        if self.persistence is None:
            return None
        return self.persistence.resume(self.question_set_id, int(self._clock() * 1000))

    def _save_record(self, record: SessionRecord) -> None:
        if self.persistence is not None:
            self.persistence.save(self.question_set_id, record)

    def _persist_progress(self) -> None:
        """Mirror answers, flags and cursor into the session record of a timed attempt."""
        if self._record is None or self.store is None:
            return
        self._record.answers = self.store.snapshot()
        self._record.flagged = self.store.flagged
        self._record.current_index = self.store.current_index
        self._save_record(self._record)

    # ------------------------------------------------------------------
    # Status
    # ------------------------------------------------------------------

    @property
    def question_count(self) -> int:
        return self.store.question_count if self.store else 0

    @property
    def current_index(self) -> int:
        return self.store.current_index if self.store else 0

    @property
    def current_question(self) -> Optional[Question]:
        if self.store is None or self.question_set is None:
            return None
        return self.question_set.questions[self.store.current_index]

    @property
    def current_answer(self) -> str:
        question = self.current_question
        return self.store.get_answer(question.id) if question else ""

    @property
    def current_result(self) -> Optional[AnswerResult]:
        """Stored feedback for the current question; never re-queried."""
        question = self.current_question
        return self.store.get_result(question.id) if question else None

    @property
    def is_last_question(self) -> bool:
        return self.store is not None and self.current_index == self.question_count - 1

    @property
    def remaining_seconds(self) -> Optional[int]:
        return self.timer.remaining_seconds if self.timer else None

    @property
    def reveal_pending(self) -> bool:
        question = self.current_question
        return question is not None and question.id in self._reveal_pending

    def status_summary(self) -> str:
        """One-line description of where the student is."""
        if self.store is None or self.question_set is None:
            return f"{self.kind.value.capitalize()} {self.question_set_id} | Status: {self.state.value}"

        parts = [
            f"{self.question_set.title or self.question_set_id}",
            f"Status: {self.state.value}",
            f"Question {self.current_index + 1}/{self.question_count}",
            f"Answered: {self.store.answered_count}/{self.question_count}",
        ]
        if self.store.flagged:
            parts.append(f"Flagged: {len(self.store.flagged)}")
        remaining = self.remaining_seconds
        if remaining is not None:
            parts.append(f"Time left: {format_time(remaining)}")
        return " | ".join(parts)

    # ------------------------------------------------------------------
    # Answering
    # ------------------------------------------------------------------

    def _require_ready(self, action: str) -> None:
        if self.state is not NavigationState.READY:
            raise InvalidNavigationStateError(f"Cannot {action} while {self.state.value}")

    def select(self, value: str) -> bool:
        """
        Set the answer for the current question.

        Returns:
            False if the answer is final (revealed, or a reveal is in flight)
        """
        self._require_ready("answer")
        question = self.current_question
        if question.id in self._reveal_pending:
            return False
        stored = self.store.set_answer(question.id, value)
        if stored:
            self._persist_progress()
        return stored

    def toggle_choice(self, key: str) -> bool:
        """Add or remove one option of a multi-select answer."""
        question = self.current_question
        if question is not None and question.question_type is not QuestionType.MULTIPLE_SELECT:
            return self.select(key)
        return self.select(toggle_choice(self.current_answer, key))

    def toggle_flag(self) -> bool:
        self._require_ready("flag")
        flagged = self.store.toggle_flag(self.current_question.id)
        self._persist_progress()
        return flagged

    # ------------------------------------------------------------------
    # Navigation
    # ------------------------------------------------------------------

    def next(self) -> int:
        return self.jump(self.current_index + 1)

    def prev(self) -> int:
        return self.jump(self.current_index - 1)

    def jump(self, index: int) -> int:
        """
        Move to a question, saving the one being left in the background.

        The cursor moves before any save completes.

        Returns:
            The new (clamped) question index
        """
        self._require_ready("navigate")
        question = self.current_question
        if question is not None:
            self._save_in_background(question.id)
        new_index = self.store.set_index(index)
        self._persist_progress()
        self.logger.debug(f"Attempt {self.attempt_id} moved to question {new_index + 1}")
        return new_index

    def _save_in_background(self, question_id: str) -> Optional[asyncio.Task]:
        if not self.store.has_unsaved(question_id):
            return None

        value = self.store.get_answer(question_id)
        self.store.mark_saved(question_id, value)
        task = asyncio.create_task(self._background_save(question_id, value))
        self._background_tasks.add(task)
        task.add_done_callback(self._background_tasks.discard)
        return task

    async def _background_save(self, question_id: str, value: str) -> None:
        # Errors are logged, never propagated
        saved = await self.client.save_answer(self.kind, self.attempt_id, question_id, value)
        if not saved and self.store is not None:
            self.store.mark_unsaved(question_id, value)

    async def wait_for_background_saves(self) -> None:
        """Wait until every in-flight background save has settled."""
        while self._background_tasks:
            await asyncio.gather(*list(self._background_tasks), return_exceptions=True)

    # ------------------------------------------------------------------
    # Reveal
    # ------------------------------------------------------------------

    async def reveal(self) -> Optional[AnswerResult]:
        """
        Ask the server whether the current answer is correct (practice only).

        A question that was already revealed returns its stored result
        without a server call. On failure the student is notified and the
        question stays unrevealed so the request can be retried.

        Returns:
            The feedback, or None if it could not be obtained
        """
        if self.kind is not QuestionSetKind.PRACTICE:
            raise InvalidNavigationStateError("Answers can only be revealed in practice mode")
        self._require_ready("reveal")

        question = self.current_question
        if self.store.is_revealed(question.id):
            return self.store.get_result(question.id)
        if question.id in self._reveal_pending:
            return None

        value = self.store.get_answer(question.id)
        self._reveal_pending.add(question.id)
        try:
            result = await self.client.submit_answer(
                self.kind, self.attempt_id, question.id, value, reveal=True
            )
        except AttemptClientError as e:
            self.logger.warning(f"Reveal failed for question {question.id}: {e}")
            await self.notifier.error(e.message or "Failed to save answer")
            return None
        finally:
            self._reveal_pending.discard(question.id)

        if result is None:
            await self.notifier.error("The server did not return feedback for this answer")
            return None

        self.store.mark_revealed(question.id, result.is_correct, result.correct_answer)
        self.logger.info(
            f"Revealed question {question.id} of attempt {self.attempt_id}",
            extra={
                'event_type': 'answer_revealed',
                'attempt_id': self.attempt_id,
                'question_id': question.id,
                'is_correct': result.is_correct,
                'timestamp': time.time()
            }
        )
        return result

    # ------------------------------------------------------------------
    # Submission
    # ------------------------------------------------------------------

    async def submit(self) -> bool:
        """
        Finalize the attempt.

        Every unsaved answer is flushed first. On failure the controller
        returns to READY so the student can retry.

        Returns:
            True once the attempt is submitted, False otherwise
        """
        if self.state in (NavigationState.SUBMITTING, NavigationState.DONE):
            return False
        self._require_ready("submit")

        for question_id in self.store.unsaved:
            self._save_in_background(question_id)
        self.state = NavigationState.SUBMITTING
        await self.wait_for_background_saves()

        try:
            await self.client.finalize(self.kind, self.attempt_id)
        except SubmissionError as e:
            self.logger.error(
                f"Failed to submit attempt {self.attempt_id}: {e}",
                extra={
                    'event_type': 'attempt_submit_failed',
                    'attempt_id': self.attempt_id,
                    'status_code': e.status_code,
                    'timestamp': time.time()
                }
            )
            self.state = NavigationState.READY
            await self.notifier.error(e.message or f"Failed to submit {self.kind.value}")
            return False
        except Exception as e:
            self.logger.error(
                f"Unexpected error submitting attempt {self.attempt_id}: {e}",
                exc_info=True,
                extra={
                    'event_type': 'attempt_submit_failed',
                    'attempt_id': self.attempt_id,
                    'timestamp': time.time()
                }
            )
            self.state = NavigationState.READY
            await self.notifier.error(f"Failed to submit {self.kind.value}")
            return False

        self._record = None
        if self.persistence is not None:
            self.persistence.delete(self.question_set_id)
        if self.timer is not None:
            self.timer.cancel()
        self.state = NavigationState.DONE

        await self.notifier.success(f"{self.kind.value.capitalize()} submitted successfully!")
        if self.on_done is not None:
            outcome = self.on_done(self.attempt_id)
            if inspect.isawaitable(outcome):
                await outcome
        return True

    async def _on_time_up(self) -> None:
        self._record = None
        if self.persistence is not None:
            self.persistence.delete(self.question_set_id)
        if self.state is not NavigationState.READY:
            return
        await self.notifier.warning(f"Time is up! Submitting your {self.kind.value}...")
        await self.submit()

    async def cancel(self) -> bool:
        """
        Abandon the attempt locally without finalizing it.

        The countdown stops and the session record is dropped, so the attempt
        will not be resumed. Answers already saved stay on the server.

        Returns:
            False while a submission is in flight or after it completed
        """
        if self.state in (NavigationState.SUBMITTING, NavigationState.DONE):
            return False
        if self.timer is not None:
            self.timer.cancel()
        self._record = None
        if self.persistence is not None:
            self.persistence.delete(self.question_set_id)
        self.state = NavigationState.CANCELLED
        self.logger.info(
            f"Cancelled {self.kind.value} attempt {self.attempt_id}",
            extra={
                'event_type': 'attempt_cancelled',
                'attempt_id': self.attempt_id,
                'timestamp': time.time()
            }
        )
        return True

    async def close(self) -> None:
        """Stop the countdown. In-flight background saves are left to finish."""
        if self.timer is not None:
            self.timer.cancel()


def format_time(seconds: int) -> str:
    minutes, secs = divmod(max(int(seconds), 0), 60)
    return f"{minutes}:{secs:02d}"
