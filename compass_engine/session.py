import logging
import math
import random
import time
import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Awaitable, Callable, Dict, Iterable, Iterator, List, Optional, Set

from compass_engine.boundary import BoundaryDetector, Substitution
from compass_engine.catalog import QuestionCatalog, load_catalog
from compass_engine.classifier import classify, macro_label
from compass_engine.config import settings
from compass_engine.errors import InvalidAnswerError, SessionStateError, SkipLimitExceeded
from compass_engine.grid import CategoryGrid
from compass_engine.matcher import FineMatcher
from compass_engine.models import Boundary, ClassificationResult, MacroCode, Question, RefinementQuestion
from compass_engine.payloads import AnswerRecord, AxisSkipStats, ShareToken, SubmissionPayload
from compass_engine.sampler import BalancedSampler
from compass_engine.scoring import axis_counts, phase_one_scores, supplementary_scores
from compass_engine.storage import ResultStore
from compass_engine.variants import QuestionnaireVariant, load_questionnaires_from_file

logger = logging.getLogger(__name__)

PhaseTwoSource = Callable[[MacroCode], Awaitable[Dict[str, List[RefinementQuestion]]]]


class SessionState(str, Enum):
    INIT = "init"
    PHASE1_ANSWERING = "phase1_answering"
    PHASE1_COMPLETE = "phase1_complete"
    PHASE2_LOADING = "phase2_loading"
    PHASE2_ANSWERING = "phase2_answering"
    COMPLETE = "complete"
    SUBMITTED = "submitted"


def new_session_id() -> str:
    return f"quiz_{int(time.time() * 1000)}_{uuid.uuid4().hex[:9]}"


class Schedule:
    """Ordered slots, each holding one question id."""

    def __init__(self, question_ids: Iterable[int] = ()):
        self._slots: List[int] = list(question_ids)

    @property
    def slots(self) -> List[int]:
        return list(self._slots)

    def replace(self, slot: int, question_id: int) -> int:
        """Puts ``question_id`` into ``slot`` and returns the id it displaced."""
        displaced = self._slots[slot]
        self._slots[slot] = question_id
        return displaced

    def extend(self, question_ids: Iterable[int]) -> None:
        self._slots.extend(question_ids)

    def copy(self) -> "Schedule":
        return Schedule(self._slots)

    def __len__(self) -> int:
        return len(self._slots)

    def __iter__(self) -> Iterator[int]:
        return iter(self._slots)

    def __contains__(self, question_id: object) -> bool:
        return question_id in self._slots


class QuizSession:
    """
    One respondent's attempt at a questionnaire.

    Tracks the schedule, answers and skips, and moves through the phase
    state machine. Scores are always recomputed from the current answers,
    never stored on their own.
    """

    def __init__(
        self,
        catalog: QuestionCatalog,
        variant: QuestionnaireVariant,
        rng: Optional[random.Random] = None,
        session_id: Optional[str] = None,
        detector: Optional[BoundaryDetector] = None,
        skip_limit: Optional[float] = None,
        phase_two_source: Optional[PhaseTwoSource] = None,
    ):
        self.session_id = session_id or new_session_id()
        self.catalog = catalog
        self.variant = variant
        self.rng = rng or random.Random()
        self.detector = detector or BoundaryDetector(band=variant.band, max_substitutions=variant.max_tiebreakers)
        self.skip_limit = settings.skip_limit_ratio if skip_limit is None else skip_limit
        self._phase_two_source = phase_two_source

        self.state = SessionState.INIT
        self.schedule = Schedule()
        self.phase_one_length = 0
        self.answers: Dict[int, float] = {}
        self.skipped: Set[int] = set()
        self.macro_code: Optional[MacroCode] = None
        self.checkpoint_reached = False
        self.tiebreaker_boundaries: List[Boundary] = []
        self.substitutions: List[Substitution] = []
        self.created_at = datetime.now(timezone.utc)
        self.completed_at: Optional[datetime] = None
        self.submitted_at: Optional[datetime] = None
        self.result_id: Optional[str] = None

    # --- Lifecycle ---

    def start(self) -> List[List[Question]]:
        """
        Samples the phase 1 schedule and opens the session for answers.

        Returns:
            The phase 1 screens.
        """
        self._require(SessionState.INIT)
        if self.variant.question_pool == "short_quiz":
            pool = self.catalog.short_quiz_questions()
        else:
            pool = self.catalog.core_phase1_questions()

        screens = BalancedSampler(self.variant.screens, self.rng).draw(pool)
        ids = [q.id for screen in screens for q in screen]
        if not ids:
            raise SessionStateError(f"No phase 1 questions available for questionnaire '{self.variant.id}'")
        if len(ids) < self.variant.scheduled_count:
            logger.warning(f"Session {self.session_id}: only {len(ids)} of {self.variant.scheduled_count} planned questions available")

        self.schedule = Schedule(ids)
        self.phase_one_length = len(ids)
        self.state = SessionState.PHASE1_ANSWERING
        logger.info(f"Session {self.session_id} started ({self.variant.id}, {len(ids)} phase 1 questions)")
        return screens

    async def begin_phase_two(self) -> List[Question]:
        """
        Loads refinement questions for the resolved macro cell and appends
        them to the schedule.

        For each supplementary axis, ``questions_per_axis`` questions are
        picked at random; the combined set is then shuffled.
        """
        self._require(SessionState.PHASE1_COMPLETE)
        if not self.variant.has_phase_two:
            raise SessionStateError(f"Questionnaire '{self.variant.id}' has no phase 2")

        self.state = SessionState.PHASE2_LOADING
        try:
            by_axis = await self._load_phase_two(self.macro_code)
        except Exception:
            logger.error(f"Session {self.session_id}: loading phase 2 questions failed", exc_info=True)
            self.state = SessionState.PHASE1_COMPLETE
            raise

        per_axis = self.variant.phase_two.questions_per_axis
        selected: List[RefinementQuestion] = []
        for axis_code in sorted(by_axis):
            pool = list(by_axis[axis_code])
            self.rng.shuffle(pool)
            selected.extend(pool[:per_axis])
        self.rng.shuffle(selected)

        self.schedule.extend(q.id for q in selected)
        if not selected:
            logger.warning(f"Session {self.session_id}: no phase 2 questions for {self.macro_code.value}")
            self._mark_complete()
        else:
            self.state = SessionState.PHASE2_ANSWERING
            logger.info(f"Session {self.session_id}: {len(selected)} phase 2 questions for {self.macro_code.value}")
        return list(selected)

    async def _load_phase_two(self, macro_code: MacroCode) -> Dict[str, List[RefinementQuestion]]:
        if self._phase_two_source is not None:
            return await self._phase_two_source(macro_code)
        return self.catalog.phase2_questions_by_axis(macro_code)

    # --- Events ---

    def answer(self, question_id: int, value: float) -> None:
        """
        Records an answer in [0, 1] and withdraws any skip on the question.

        Raises:
            InvalidAnswerError: Value out of range or question not scheduled.
            SessionStateError: Question's phase is not open for answers.
        """
        self._editable_question(question_id)
        if isinstance(value, bool) or not isinstance(value, (int, float)) or math.isnan(value) or not 0 <= value <= 1:
            raise InvalidAnswerError(f"Answer for question {question_id} must be between 0 and 1, got {value!r}")
        self.answers[question_id] = float(value)
        self.skipped.discard(question_id)
        self._advance()

    def skip(self, question_id: int) -> None:
        """
        Withdraws a question from scoring; any earlier answer value is kept.

        Raises:
            SkipLimitExceeded: The skip would take its axis past the cap.
                The session is not modified.
        """
        question = self._editable_question(question_id)
        if question_id in self.skipped:
            return
        axis = question.axis_key
        scheduled = axis_counts(self.questions).get(axis, 0)
        skipped_on_axis = axis_counts(self.questions, self.skipped).get(axis, 0)
        if scheduled == 0 or (skipped_on_axis + 1) / scheduled > self.skip_limit:
            logger.info(f"Session {self.session_id}: skip of question {question_id} rejected ({axis} {skipped_on_axis}/{scheduled})")
            raise SkipLimitExceeded(axis, skipped_on_axis, scheduled, self.skip_limit)
        self.skipped.add(question_id)
        self._advance()

    def unskip(self, question_id: int) -> None:
        """Returns a skipped question to scoring with its retained value, if any."""
        self._editable_question(question_id)
        self.skipped.discard(question_id)
        self._advance()

    # --- Views ---

    @property
    def questions(self) -> List[Question]:
        return [self.catalog.by_id[qid] for qid in self.schedule]

    @property
    def phase_one_questions(self) -> List[Question]:
        return self.questions[:self.phase_one_length]

    @property
    def phase_two_questions(self) -> List[Question]:
        return self.questions[self.phase_one_length:]

    @property
    def answered_ids(self) -> Set[int]:
        """Ids with a live answer: answered and not skipped."""
        return {qid for qid in self.answers if qid not in self.skipped and qid in self.schedule}

    def is_responded(self, question_id: int) -> bool:
        return question_id in self.answers or question_id in self.skipped

    def screens(self) -> List[List[Question]]:
        """Scheduled questions chunked into screens, phase 2 starting on a new screen."""
        size = self.variant.screen_size
        chunks: List[List[Question]] = []
        for block in (self.phase_one_questions, self.phase_two_questions):
            chunks.extend(block[i:i + size] for i in range(0, len(block), size))
        return chunks

    def progress(self) -> Dict[str, int]:
        responded = sum(1 for qid in self.schedule if self.is_responded(qid))
        return {"responded": responded, "scheduled": len(self.schedule)}

    def provisional_scores(self) -> Dict[str, float]:
        return phase_one_scores(self.phase_one_questions, self.answers, self.skipped)

    def supplementary_scores(self) -> Dict[str, float]:
        return supplementary_scores(self.phase_two_questions, self.answers, self.skipped)

    def skip_stats(self) -> Dict[str, AxisSkipStats]:
        scheduled = axis_counts(self.questions)
        skipped = axis_counts(self.questions, self.skipped)
        return {
            axis: AxisSkipStats(skipped=skipped.get(axis, 0), scheduled=count, ratio=skipped.get(axis, 0) / count)
            for axis, count in scheduled.items()
        }

    # --- Results ---

    def result(self, matcher: Optional[FineMatcher] = None, grid: Optional[CategoryGrid] = None) -> ClassificationResult:
        """
        Resolves the final classification.

        Questionnaires with a phase 2 resolve through the fine matcher; the
        others (or a missing matcher) resolve to the coarse grid cell.
        """
        self._require(SessionState.COMPLETE, SessionState.SUBMITTED)
        scores = self.provisional_scores()
        supplementary = self.supplementary_scores()
        code = self.macro_code
        label = grid.macro_label(code) if grid is not None else macro_label(code)

        fallback = False
        coarse = grid.coarse_cell(code) if grid is not None else None
        if self.variant.has_phase_two and matcher is not None:
            match = matcher.closest(code, supplementary)
            category, fallback = match.label, match.fallback
            cell = grid.describe(category, code) if grid is not None else None
        else:
            category = coarse.category if coarse is not None else label
            cell = coarse
        return ClassificationResult(
            economic=scores["economic"],
            authority=scores["authority"],
            cultural=scores["cultural"],
            macro_code=code,
            macro_label=label,
            category=category,
            friendly_label=cell.friendly_label if cell else "",
            description=cell.description if cell else "",
            supplementary_scores=supplementary,
            supplementary_axes=grid.supplementary_axes_for(code) if grid is not None else [],
            align_with=list(cell.align_with) if cell else [],
            surprising_alignment=list(cell.surprising_alignment) if cell else [],
            fallback=fallback,
        )

    def answer_records(self) -> List[AnswerRecord]:
        return [
            AnswerRecord(
                question_id=q.id,
                source_id=q.source_id,
                axis=q.axis_key,
                phase=q.phase,
                value=self.answers.get(q.id),
                skipped=q.id in self.skipped,
            )
            for q in self.questions
        ]

    def build_submission(self, result: ClassificationResult) -> SubmissionPayload:
        return SubmissionPayload(
            session_id=self.session_id,
            variant=self.variant.id,
            scores={"economic": result.economic, "authority": result.authority, "cultural": result.cultural},
            macro_code=result.macro_code,
            macro_label=result.macro_label,
            category=result.category,
            friendly_label=result.friendly_label,
            description=result.description,
            supplementary_scores=result.supplementary_scores,
            answers=self.answer_records(),
            skip_stats=self.skip_stats(),
            tiebreaker_boundaries=list(self.tiebreaker_boundaries),
            created_at=self.created_at,
            submitted_at=datetime.now(timezone.utc),
        )

    async def submit(
        self,
        store: ResultStore,
        matcher: Optional[FineMatcher] = None,
        grid: Optional[CategoryGrid] = None,
    ) -> str:
        """
        Hands the finished session to the result store and locks it.

        Returns:
            The id assigned by the store.
        """
        self._require(SessionState.COMPLETE)
        payload = self.build_submission(self.result(matcher, grid))
        result_id = await store.save(payload)
        self.result_id = result_id
        self.submitted_at = payload.submitted_at
        self.state = SessionState.SUBMITTED
        logger.info(f"Session {self.session_id} submitted as {result_id}")
        return result_id

    def share_token(self, matcher: Optional[FineMatcher] = None, grid: Optional[CategoryGrid] = None) -> str:
        result = self.result(matcher, grid)
        return ShareToken(
            economic=result.economic,
            authority=result.authority,
            cultural=result.cultural,
            macro_code=result.macro_code,
            category=result.category,
            variant=self.variant.id,
        ).encode()

    # --- Internals ---

    def _require(self, *states: SessionState) -> None:
        if self.state not in states:
            expected = ", ".join(s.value for s in states)
            raise SessionStateError(f"Session {self.session_id} is {self.state.value}; expected {expected}")

    def _editable_question(self, question_id: int) -> Question:
        if self.state == SessionState.SUBMITTED:
            raise SessionStateError(f"Session {self.session_id} has been submitted")
        if question_id not in self.schedule:
            raise InvalidAnswerError(f"Question {question_id} is not scheduled in session {self.session_id}")
        question = self.catalog.by_id[question_id]
        if question.phase == 1 and self.state != SessionState.PHASE1_ANSWERING:
            raise SessionStateError(f"Phase 1 answers are locked (session is {self.state.value})")
        if question.phase == 2 and self.state not in (SessionState.PHASE2_ANSWERING, SessionState.COMPLETE):
            raise SessionStateError(f"Phase 2 is not open (session is {self.state.value})")
        return question

    def _advance(self) -> None:
        if self.state == SessionState.PHASE1_ANSWERING:
            responded = sum(1 for qid in self.schedule.slots[:self.phase_one_length] if self.is_responded(qid))
            checkpoint = self.variant.checkpoint
            if checkpoint and not self.checkpoint_reached and responded >= checkpoint:
                self._run_checkpoint()
                responded = sum(1 for qid in self.schedule.slots[:self.phase_one_length] if self.is_responded(qid))
            if responded == self.phase_one_length:
                self._complete_phase_one()
        elif self.state in (SessionState.PHASE2_ANSWERING, SessionState.COMPLETE):
            if all(self.is_responded(qid) for qid in self.schedule):
                if self.state != SessionState.COMPLETE:
                    self._mark_complete()
            else:
                self.state = SessionState.PHASE2_ANSWERING
                self.completed_at = None

    def _run_checkpoint(self) -> None:
        """Boundary check; runs once per session."""
        self.checkpoint_reached = True
        scores = self.provisional_scores()
        boundaries = self.detector.detect(scores)
        self.tiebreaker_boundaries = boundaries
        if not boundaries:
            return

        plan = self.detector.plan(
            schedule=self.schedule.slots[:self.phase_one_length],
            questions=self.catalog.by_id,
            tail_start=self.variant.checkpoint,
            answered=self.answered_ids,
            tiebreakers=self.catalog.tiebreakers_by_boundary(boundaries),
            boundaries=boundaries,
            skipped=self.skipped,
            skip_limit=self.skip_limit,
        )
        self._apply_substitutions(plan)

    def _apply_substitutions(self, plan: List[Substitution]) -> None:
        # Build everything first, then swap in, so no intermediate state is observable
        schedule = self.schedule.copy()
        skipped = set(self.skipped)
        answers = dict(self.answers)
        for sub in plan:
            schedule.replace(sub.slot, sub.tiebreaker_id)
            skipped.discard(sub.displaced_id)
            answers.pop(sub.displaced_id, None)
        self.schedule, self.skipped, self.answers = schedule, skipped, answers
        self.substitutions = list(plan)
        if plan:
            logger.info(
                f"Session {self.session_id}: swapped in {len(plan)} tiebreakers for "
                f"{[b.value for b in self.tiebreaker_boundaries]}"
            )

    def _complete_phase_one(self) -> None:
        scores = self.provisional_scores()
        self.macro_code = classify(scores["economic"], scores["authority"], self.detector.boundary)
        self.state = SessionState.PHASE1_COMPLETE
        logger.info(f"Session {self.session_id}: phase 1 complete, macro cell {self.macro_code.value}")
        if not self.variant.has_phase_two:
            self._mark_complete()

    def _mark_complete(self) -> None:
        self.state = SessionState.COMPLETE
        self.completed_at = datetime.now(timezone.utc)


async def open_session(
    variant_id: str = "long",
    seed: Optional[int] = None,
    catalog_source: Optional[str] = None,
    questionnaires_path: Optional[str] = None,
) -> QuizSession:
    """
    Loads the catalog (shared, cached) and starts a new session.

    Raises:
        CatalogParseError: If the question catalog cannot be loaded.
        VariantConfigError: If the questionnaire variant is unknown or invalid.
    """
    variant = load_questionnaires_from_file(questionnaires_path).get(variant_id)
    catalog = await load_catalog(catalog_source)
    session = QuizSession(catalog, variant, rng=random.Random(seed))
    session.start()
    return session
