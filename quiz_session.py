"""Quiz session state machine.

A session draws every song of its pool at most once, times each answer from
the moment the question was drawn, and supports three answer styles: typed
exact answers, typed fuzzy answers (with an explicit candidate selection step
when several titles match) and four-button multiple choice.
"""
from __future__ import annotations

import logging
import random
import time
from dataclasses import dataclass
from enum import Enum
from typing import Callable, List, Optional, Sequence

from quiz_judge import exact_match, find_fuzzy_candidates, group_by_title, normalise_answer
from song_catalog import SongCatalogEntry

LOGGER = logging.getLogger(__name__)


CHOICE_COUNT = 4


class QuizStatus(str, Enum):
    IDLE = "idle"
    AWAITING_ANSWER = "awaiting_answer"
    AWAITING_CANDIDATE_SELECTION = "awaiting_candidate_selection"
    SHOWING_RESULT = "showing_result"
    FINISHED = "finished"


class AnswerMode(str, Enum):
    EXACT = "exact"
    FUZZY = "fuzzy"
    BUTTONS = "buttons"


class QuizStateError(RuntimeError):
    pass


@dataclass
class QuestionResult:
    entry: SongCatalogEntry
    answer: str
    correct: bool
    response_time: float


class QuizSession:
    def __init__(
        self,
        catalog: Optional[Sequence[SongCatalogEntry]] = None,
        answer_mode: AnswerMode = AnswerMode.EXACT,
        rng: Optional[random.Random] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.answer_mode = AnswerMode(answer_mode)
        self._catalog = list(catalog) if catalog is not None else None
        self._rng = rng or random.Random()
        self._clock = clock
        self.status = QuizStatus.IDLE
        self.pool: List[SongCatalogEntry] = []
        self.used: List[SongCatalogEntry] = []
        self.current: Optional[SongCatalogEntry] = None
        self.question_started_at: Optional[float] = None
        self.response_times: List[float] = []
        self.correct_count = 0
        self.total_count = 0
        self.pending_candidates: List[SongCatalogEntry] = []
        self.choices: List[SongCatalogEntry] = []
        self.last_result: Optional[QuestionResult] = None

    # -- read-only views -------------------------------------------------

    @property
    def question_number(self) -> int:
        return self.total_count

    @property
    def question_total(self) -> int:
        return len(self.used) + len(self.pool) + (1 if self.current is not None and self.current not in self.used else 0)

    @property
    def accuracy(self) -> float:
        if not self.total_count:
            return 0.0
        return self.correct_count / self.total_count

    @property
    def average_response_time(self) -> float:
        if not self.response_times:
            return 0.0
        return sum(self.response_times) / len(self.response_times)

    def elapsed(self) -> float:
        if self.question_started_at is None or self.status is QuizStatus.FINISHED:
            return 0.0
        return self._clock() - self.question_started_at

    # -- transitions ------------------------------------------------------

    def _require(self, *statuses: QuizStatus) -> None:
        if self.status not in statuses:
            allowed = ", ".join(status.value for status in statuses)
            raise QuizStateError(f"Operation not allowed in state {self.status.value} (expected {allowed})")

    def start(self, pool: Sequence[SongCatalogEntry]) -> None:
        self._require(QuizStatus.IDLE, QuizStatus.FINISHED)
        if not pool:
            raise QuizStateError("Cannot start a quiz with an empty pool")
        if self.answer_mode is AnswerMode.BUTTONS and len(pool) < CHOICE_COUNT:
            raise QuizStateError(f"Button answers need at least {CHOICE_COUNT} songs, got {len(pool)}")
        self.pool = list(pool)
        self.used = []
        self.current = None
        self.question_started_at = None
        self.response_times = []
        self.correct_count = 0
        self.total_count = 0
        self.pending_candidates = []
        self.choices = []
        self.last_result = None
        LOGGER.info("Quiz started with %d songs (%s answers)", len(self.pool), self.answer_mode.value)
        self._draw()

    def _draw(self) -> None:
        self.last_result = None
        self.choices = []
        if not self.pool:
            LOGGER.info("All songs asked; quiz finished")
            self._finish()
            return
        index = self._rng.randrange(len(self.pool))
        self.current = self.pool.pop(index)
        self.total_count += 1
        if self.answer_mode is AnswerMode.BUTTONS:
            self.choices = self._build_choices(self.current)
        self.status = QuizStatus.AWAITING_ANSWER
        self.question_started_at = self._clock()
        LOGGER.debug("Question %d: %s", self.total_count, self.current.primary_title)

    def _build_choices(self, correct: SongCatalogEntry) -> List[SongCatalogEntry]:
        distractors = [entry for entry in self.pool + self.used if entry is not correct]
        choices = [correct] + self._rng.sample(distractors, CHOICE_COUNT - 1)
        self._rng.shuffle(choices)
        return choices

    def _finish(self) -> None:
        self.status = QuizStatus.FINISHED
        self.current = None
        self.question_started_at = None
        self.pending_candidates = []
        self.choices = []

    def _record(self, answer: str, correct: bool) -> QuestionResult:
        assert self.current is not None and self.question_started_at is not None
        response_time = self._clock() - self.question_started_at
        self.response_times.append(response_time)
        if correct:
            self.correct_count += 1
        self.used.append(self.current)
        self.pending_candidates = []
        self.status = QuizStatus.SHOWING_RESULT
        self.last_result = QuestionResult(self.current, answer, correct, response_time)
        LOGGER.debug(
            "Answer %r for %s: %s in %.2fs",
            answer,
            self.current.primary_title,
            "correct" if correct else "wrong",
            response_time,
        )
        return self.last_result

    def _is_blank(self, answer: str) -> bool:
        if normalise_answer(answer):
            return False
        LOGGER.debug("Ignoring blank answer for question %d", self.total_count)
        return True

    def submit_exact(self, answer: str) -> Optional[QuestionResult]:
        """Judge a typed answer against the first title.

        A blank answer is ignored: the question stays open and ``None`` is returned.
        """

        self._require(QuizStatus.AWAITING_ANSWER)
        assert self.current is not None
        if self._is_blank(answer):
            return None
        return self._record(answer, exact_match(answer, self.current))

    def submit_fuzzy(self, answer: str) -> Optional[QuestionResult]:
        """Judge a fuzzy answer.

        Returns ``None`` when several distinct titles match; the session then
        waits for ``select_candidate`` and the clock keeps running. A blank
        answer also returns ``None`` and leaves the question open.
        """

        self._require(QuizStatus.AWAITING_ANSWER)
        assert self.current is not None
        if self._is_blank(answer):
            return None
        catalog = self._catalog if self._catalog is not None else self.pool + self.used + [self.current]
        candidates = find_fuzzy_candidates(answer, catalog)
        groups = group_by_title(candidates)
        if len(groups.titles) >= 2:
            self.pending_candidates = [groups.representatives[title] for title in groups.titles]
            self.status = QuizStatus.AWAITING_CANDIDATE_SELECTION
            LOGGER.debug("Answer %r is ambiguous between %d titles", answer, len(groups.titles))
            return None
        correct = any(candidate is self.current for candidate in candidates)
        return self._record(answer, correct)

    def select_candidate(self, entry: SongCatalogEntry) -> QuestionResult:
        self._require(QuizStatus.AWAITING_CANDIDATE_SELECTION)
        if not any(candidate is entry for candidate in self.pending_candidates):
            raise QuizStateError("Selected entry was not one of the offered candidates")
        return self._record(entry.primary_title, entry is self.current)

    def cancel_selection(self) -> None:
        self._require(QuizStatus.AWAITING_CANDIDATE_SELECTION)
        self.pending_candidates = []
        self.status = QuizStatus.AWAITING_ANSWER

    def select_choice(self, entry: SongCatalogEntry) -> QuestionResult:
        self._require(QuizStatus.AWAITING_ANSWER)
        if self.answer_mode is not AnswerMode.BUTTONS:
            raise QuizStateError("Choices are only offered in button answer mode")
        if not any(choice is entry for choice in self.choices):
            raise QuizStateError("Selected entry was not one of the offered choices")
        return self._record(entry.primary_title, entry is self.current)

    def next(self) -> None:
        self._require(QuizStatus.SHOWING_RESULT)
        self._draw()

    def stop(self) -> None:
        if self.status is not QuizStatus.FINISHED:
            LOGGER.info("Quiz stopped after %d questions", self.total_count)
        self._finish()
