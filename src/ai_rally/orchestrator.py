"""Rally orchestration between a reviewer and a reviewee agent.

The orchestrator owns the rally state machine. It issues one adapter call at a
time, records every transition in an append-only history, and stops in a
waiting state whenever the reviewee needs a human decision. Callers resume
with ``answer_clarification``, ``grant_permission`` or ``deny_permission``.
"""

from __future__ import annotations

import asyncio
import contextlib
import functools
import logging
import time
from collections.abc import Awaitable, Callable, Iterator
from typing import TypeVar

from ai_rally.adapter import AgentAdapter
from ai_rally.config_schema import RallyConfig
from ai_rally.errors import AdapterError, InvalidStateError
from ai_rally.logging_config import rally_tag
from ai_rally.models import (
    AgentText,
    Approved,
    ClarificationNeeded,
    ClarificationPolicy,
    Context,
    FixCompleted,
    IterationStarted,
    PermissionDeniedPolicy,
    PermissionNeeded,
    PermissionRequest,
    RallyEvent,
    RallyFailed,
    RallyState,
    ReviewAction,
    ReviewCompleted,
    RevieweeOutput,
    RevieweeStatus,
    ReviewerOutput,
    StateChanged,
)
from ai_rally.notifications import EventChannel
from ai_rally.prompts import PromptBuilder
from ai_rally.state_machine import TERMINAL_STATES, validate_transition

logger = logging.getLogger("ai_rally")

_T = TypeVar("_T")
Step = Callable[[], Awaitable["Step | None"]]


class Orchestrator:
    """Drives one rally over one pull request.

    Usage:
        orchestrator = Orchestrator(create_adapter("codex"), context, config)
        state = await orchestrator.run()
        if state == RallyState.WAITING_FOR_PERMISSION:
            state = await orchestrator.grant_permission()
    """

    def __init__(
        self,
        adapter: AgentAdapter,
        context: Context,
        config: RallyConfig | None = None,
        *,
        channel: EventChannel | None = None,
        prompt_builder: PromptBuilder | None = None,
    ) -> None:
        self.adapter = adapter
        self.context = context
        self.config = config or RallyConfig()
        self.channel = channel or EventChannel(
            maxsize=self.config.event_queue_size,
            history_size=self.config.event_history_size,
        )
        self.prompts = prompt_builder or PromptBuilder()
        self.last_review: ReviewerOutput | None = None
        self.last_fix: RevieweeOutput | None = None
        self.pending_question: str | None = None
        self.pending_permission: PermissionRequest | None = None
        self.last_error: str | None = None
        self._state = RallyState.INITIALIZING
        self._iteration = 0
        self._history: list[RallyEvent] = []
        self._call_lock = asyncio.Lock()
        self._reviewer_started = False
        self._reviewee_started = False
        self._retry: tuple[RallyState, Step] | None = None
        self.adapter.attach_event_sink(self.channel)

    @property
    def state(self) -> RallyState:
        return self._state

    @property
    def iteration(self) -> int:
        """Number of reviewer turns started so far."""
        return self._iteration

    @property
    def history(self) -> tuple[RallyEvent, ...]:
        return tuple(self._history)

    @property
    def tag(self) -> str:
        return f"{self.context.repo}#{self.context.pr_number}"

    @property
    def can_retry(self) -> bool:
        return self._state == RallyState.ERROR and self._retry is not None

    @contextlib.contextmanager
    def _tagged(self) -> Iterator[None]:
        token = rally_tag.set(self.tag)
        try:
            yield
        finally:
            rally_tag.reset(token)

    # -- Public operations --

    async def run(self) -> RallyState:
        """Start the rally and drive it to a terminal or waiting state."""
        self._require(RallyState.INITIALIZING, "run")
        with self._tagged():
            logger.info(
                "rally.run -> backend=%s max_iterations=%s",
                self.adapter.name,
                self.config.max_iterations,
            )
            self._transition(RallyState.REVIEWER_REVIEWING)
            return await self._drive(self._start_review_step(self.prompts.reviewer))

    async def answer_clarification(self, answer: str) -> RallyState:
        """Resume the reviewee with an answer to its pending question."""
        self._require(RallyState.WAITING_FOR_CLARIFICATION, "answer_clarification")
        if not answer.strip():
            raise ValueError("answer must not be empty")
        with self._tagged():
            return await self._drive(self._answer_step(answer))

    async def grant_permission(self) -> RallyState:
        """Let the reviewee go ahead with its pending permission request."""
        self._require(RallyState.WAITING_FOR_PERMISSION, "grant_permission")
        request = self.pending_permission
        assert request is not None
        with self._tagged():
            logger.info("rally.permission -> granted action=%s", request.action)
            self.pending_permission = None
            self._transition(RallyState.REVIEWEE_FIX)
            prompt = self.prompts.permission_granted(request.action)
            return await self._drive(self._fix_step(self._reviewee_call(prompt)))

    async def deny_permission(self) -> RallyState:
        """Refuse the pending permission request.

        With the ``abort`` policy the rally fails; with ``rereview`` the
        reviewer is told about the refusal and reviews the current state.
        """
        self._require(RallyState.WAITING_FOR_PERMISSION, "deny_permission")
        request = self.pending_permission
        assert request is not None
        with self._tagged():
            logger.info(
                "rally.permission -> denied action=%s policy=%s",
                request.action,
                self.config.permission_denied_policy,
            )
            self.pending_permission = None
            if self.config.permission_denied_policy == PermissionDeniedPolicy.ABORT:
                self._fail(f"Permission denied: {request.action}")
                return self._state
            self._transition(RallyState.REVIEWER_REVIEWING)
            step = self._start_review_step(
                lambda _context, _iteration: self.prompts.permission_denied(
                    request.action, request.reason
                )
            )
            return await self._drive(step)

    async def retry(self) -> RallyState:
        """Re-issue the adapter call that failed, from the state it failed in."""
        self._require(RallyState.ERROR, "retry")
        if self._retry is None:
            raise InvalidStateError("The rally failure is not retryable")
        phase, step = self._retry
        with self._tagged():
            logger.info("rally.retry -> phase=%s iteration=%s", phase, self._iteration)
            self._retry = None
            self.last_error = None
            self._transition(phase)
            return await self._drive(step)

    def abort(self, reason: str = "Rally aborted") -> RallyState:
        """Stop the rally. A call already in flight has its result discarded."""
        if self._state in TERMINAL_STATES:
            raise InvalidStateError(f"Cannot abort a rally in state {self._state}")
        with self._tagged():
            self._retry = None
            self.pending_question = None
            self.pending_permission = None
            self._fail(reason)
        return self._state

    # -- Steps --

    async def _drive(self, step: Step | None) -> RallyState:
        while step is not None:
            step = await step()
        logger.info("rally.drive -> settled state=%s iteration=%s", self._state, self._iteration)
        return self._state

    def _start_review_step(self, build_prompt: Callable[[Context, int], str]) -> Step:
        """Count a new reviewer turn and build the call that performs it."""
        self._iteration += 1
        self._emit(IterationStarted(iteration=self._iteration))
        prompt = build_prompt(self.context, self._iteration)
        if self._reviewer_started:
            call = functools.partial(self.adapter.continue_reviewer, prompt)
        else:
            call = functools.partial(self._first_reviewer_call, prompt)
        return functools.partial(self._review_step, call)

    async def _first_reviewer_call(self, prompt: str) -> ReviewerOutput:
        review = await self.adapter.run_reviewer(prompt, self.context)
        self._reviewer_started = True
        return review

    async def _first_reviewee_call(self, prompt: str) -> RevieweeOutput:
        fix = await self.adapter.run_reviewee(prompt, self.context)
        self._reviewee_started = True
        return fix

    def _reviewee_call(self, prompt: str) -> Callable[[], Awaitable[RevieweeOutput]]:
        if self._reviewee_started:
            return functools.partial(self.adapter.continue_reviewee, prompt)
        return functools.partial(self._first_reviewee_call, prompt)

    async def _review_step(self, call: Callable[[], Awaitable[ReviewerOutput]]) -> Step | None:
        review = await self._call(call, functools.partial(self._review_step, call))
        if review is None:
            return None
        self.last_review = review
        self._emit(ReviewCompleted(review=review))
        logger.info(
            "rally.review -> iteration=%s action=%s comments=%s blocking=%s",
            self._iteration,
            review.action,
            len(review.comments),
            len(review.blocking_issues),
        )

        if review.action == ReviewAction.APPROVE:
            self._transition(RallyState.COMPLETED)
            self._emit(Approved(summary=review.summary))
            return None
        if self._iteration >= self.config.max_iterations:
            self._fail(
                f"Max iterations ({self.config.max_iterations}) reached without approval"
            )
            return None

        self._transition(RallyState.REVIEWEE_FIX)
        prompt = self.prompts.reviewee(self.context, review, self._iteration)
        return self._fix_step(self._reviewee_call(prompt))

    def _fix_step(self, call: Callable[[], Awaitable[RevieweeOutput]]) -> Step:
        return functools.partial(self._run_fix, call)

    async def _run_fix(self, call: Callable[[], Awaitable[RevieweeOutput]]) -> Step | None:
        fix = await self._call(call, self._fix_step(call))
        if fix is None:
            return None
        self.last_fix = fix
        self._emit(FixCompleted(fix=fix))
        logger.info(
            "rally.fix -> iteration=%s status=%s files=%s",
            self._iteration,
            fix.status,
            len(fix.files_modified),
        )

        if fix.status == RevieweeStatus.COMPLETED:
            self._transition(RallyState.REVIEWER_REVIEWING)
            summary = self._changes_summary(fix)
            return self._start_review_step(
                lambda context, iteration: self.prompts.rereview(context, iteration, summary)
            )
        if fix.status == RevieweeStatus.NEEDS_CLARIFICATION:
            assert fix.question is not None
            self.pending_question = fix.question
            self._transition(RallyState.WAITING_FOR_CLARIFICATION)
            self._emit(ClarificationNeeded(question=fix.question))
            if self.config.clarification_policy == ClarificationPolicy.REVIEWER:
                return functools.partial(self._ask_reviewer_step, fix.question)
            return None
        if fix.status == RevieweeStatus.NEEDS_PERMISSION:
            assert fix.permission_request is not None
            self.pending_permission = fix.permission_request
            self._transition(RallyState.WAITING_FOR_PERMISSION)
            self._emit(
                PermissionNeeded(
                    action=fix.permission_request.action,
                    reason=fix.permission_request.reason,
                )
            )
            return None

        self._fail(f"Reviewee reported an error: {fix.error_details or fix.summary}")
        return None

    async def _ask_reviewer_step(self, question: str) -> Step | None:
        prompt = self.prompts.clarification_question(question)
        call = functools.partial(self.adapter.continue_reviewer, prompt)
        answer = await self._call(call, functools.partial(self._ask_reviewer_step, question))
        if answer is None:
            return None
        logger.info("rally.clarification -> answered by reviewer")
        self.channel.publish(AgentText(text=answer.summary))
        return self._answer_step(answer.summary)

    def _answer_step(self, answer: str) -> Step:
        self.pending_question = None
        self._transition(RallyState.REVIEWEE_FIX)
        return self._fix_step(self._reviewee_call(self.prompts.clarification_answer(answer)))

    # -- Plumbing --

    async def _call(self, call: Callable[[], Awaitable[_T]], retry: Step) -> _T | None:
        """Run one adapter call; on failure move to ERROR and return None."""
        phase = self._state
        async with self._call_lock:
            started = time.monotonic()
            logger.info("rally.call -> start phase=%s iteration=%s", phase, self._iteration)
            try:
                result = await call()
            except AdapterError as exc:
                logger.warning("rally.call -> failed phase=%s err=%s", phase, exc)
                if self._state == phase:
                    self._retry = (phase, retry)
                    self._fail(str(exc))
                return None
            except asyncio.CancelledError:
                if self._state not in TERMINAL_STATES:
                    self._fail("Rally cancelled")
                raise
            finally:
                logger.info(
                    "rally.call -> end phase=%s elapsed=%.1fs", phase, time.monotonic() - started
                )
        if self._state != phase:
            logger.info("rally.call -> result discarded; state is now %s", self._state)
            return None
        return result

    def _changes_summary(self, fix: RevieweeOutput) -> str:
        files = "\n".join(f"- {path}" for path in fix.files_modified) or "- (none reported)"
        return f"{fix.summary}\n\nFiles modified:\n{files}"

    def _require(self, expected: RallyState, operation: str) -> None:
        if self._state != expected:
            raise InvalidStateError(
                f"{operation} requires state {expected}, rally is in {self._state}"
            )

    def _emit(self, event: RallyEvent) -> None:
        self._history.append(event)
        self.channel.publish(event)

    def _transition(self, target: RallyState) -> None:
        validate_transition(self._state, target)
        old = self._state
        self._state = target
        logger.info("rally.state -> %s => %s", old, target)
        self._emit(StateChanged(old=old, new=target))

    def _fail(self, message: str) -> None:
        self._transition(RallyState.ERROR)
        self.last_error = message
        logger.warning("rally.error -> %s", message)
        self._emit(RallyFailed(message=message))
