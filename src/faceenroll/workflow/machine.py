"""Enrollment workflow state machine.

Sequences one enrollment session on a kiosk surface:

    awaiting_credential -> verifying_credential -> [existing_enrollment_conflict
    -> verifying_credential (delete)] -> warming_up -> scanning -> committing
    -> success | error

Every timer and remote call belongs to a SessionScope. Each state gets a
child scope that is closed on the next transition, so a late timer or a
remote result from a previous state can never act on the current one, and
tearing the whole session down is a single ``close()``.

Example:
    >>> loop = EventLoop()
    >>> workflow = EnrollmentWorkflow(loop, video, analyzer, service,
    ...                               on_complete=lambda identity: show_home())
    >>> workflow.start()
    >>> workflow.on_credential(card_token)   # from the card reader
    >>> loop.run_forever()
"""

from __future__ import annotations

import logging
from concurrent.futures import Future
from typing import Callable, List, Optional

import numpy as np

from faceenroll.config import EnrollmentConfig
from faceenroll.errors import CommitError, EnrollmentError, SetupTimeout
from faceenroll.gate.expression import ExpressionGate
from faceenroll.gate.hold import HoldStillAccumulator
from faceenroll.gate.position import PositionValidator, QualityPredicate
from faceenroll.gate.tick import evaluate_tick, make_quality_check
from faceenroll.observability import (
    CaptureRecord,
    CommitRecord,
    HoldTickRecord,
    ObservabilityHub,
    SessionEndRecord,
    SessionStartRecord,
    StateTransitionRecord,
)
from faceenroll.runtime.loop import EventLoop
from faceenroll.runtime.scope import SessionScope
from faceenroll.services.base import FrameAnalyzer, IdentityService, VideoSource
from faceenroll.services.codec import encode_snapshot, serialize_descriptor
from faceenroll.types import EnrollmentIdentity, VerificationResult, mask_token
from faceenroll.workflow.states import (
    TERMINAL,
    AwaitingCredential,
    Committing,
    Error,
    ExistingEnrollmentConflict,
    Scanning,
    State,
    Success,
    VerifyingCredential,
    WarmingUp,
    WarmupProgress,
    WorkflowState,
)

logger = logging.getLogger(__name__)

MSG_CAPTURING = "Capturing..."
SNAPSHOT_EVENT_TYPE = "FACE_ID_ENROLLMENT"

StateListener = Callable[[Optional[State], Optional[State]], None]


class EnrollmentWorkflow:
    """Face enrollment state machine for one kiosk surface.

    All methods must be called on the loop thread. Only one session is
    active at a time.

    Args:
        loop: Event loop that drives timers and async completions.
        video: Camera stream.
        analyzer: Per-frame face analyzer.
        service: Backend identity service.
        config: Thresholds and timings.
        quality_check: Capture-quality predicate; defaults to a confidence check.
        on_complete: Called with the identity after the success display delay.
        on_cancel: Called when the user cancels.
        hub: Trace hub (defaults to the global instance).
    """

    def __init__(
        self,
        loop: EventLoop,
        video: VideoSource,
        analyzer: FrameAnalyzer,
        service: IdentityService,
        config: Optional[EnrollmentConfig] = None,
        quality_check: Optional[QualityPredicate] = None,
        on_complete: Optional[Callable[[EnrollmentIdentity], None]] = None,
        on_cancel: Optional[Callable[[], None]] = None,
        hub: Optional[ObservabilityHub] = None,
    ):
        self._loop = loop
        self._video = video
        self._analyzer = analyzer
        self._service = service
        self.config = config or EnrollmentConfig()
        self._validator = PositionValidator(
            self.config.position,
            quality_check or make_quality_check(self.config.quality),
        )
        self._gate = ExpressionGate(self.config.expression)
        self._on_complete = on_complete
        self._on_cancel = on_cancel
        self._hub = hub or ObservabilityHub.get_instance()
        self._listeners: List[StateListener] = []

        self._state: Optional[State] = None
        self._scope: Optional[SessionScope] = None
        self._state_scope: Optional[SessionScope] = None
        self._session_id = 0
        self._session_started_at = 0.0
        self._video_started = False

    # ── Introspection ──

    @property
    def state(self) -> Optional[State]:
        """Current state variant, None when idle."""
        return self._state

    @property
    def tag(self) -> Optional[WorkflowState]:
        return self._state.tag if self._state is not None else None

    @property
    def active(self) -> bool:
        return self._scope is not None

    @property
    def session_id(self) -> int:
        return self._session_id

    @property
    def guidance(self) -> Optional[str]:
        """Text for the on-screen prompt in the current state."""
        state = self._state
        if isinstance(state, Scanning):
            return state.guidance
        if isinstance(state, Committing):
            return MSG_CAPTURING
        if isinstance(state, Error):
            return state.message
        return None

    def pending_timers(self) -> int:
        """Timers owned by the current session."""
        return self._scope.pending_timers() if self._scope is not None else 0

    def add_listener(self, listener: StateListener) -> None:
        """Register ``listener(old_state, new_state)`` for every transition."""
        self._listeners.append(listener)

    # ── User and host events ──

    def start(self) -> bool:
        """Open a session and wait for a credential."""
        if self._scope is not None:
            logger.debug("Session %d already active, ignoring start", self._session_id)
            return False
        self._open_session()
        self._transition(AwaitingCredential())
        return True

    def on_credential(self, token: str) -> bool:
        """Card tap. Ignored unless awaiting a credential."""
        if not isinstance(self._state, AwaitingCredential):
            logger.debug("Ignoring credential %s in state %s", mask_token(token), self.tag)
            return False

        logger.info("Session %d: verifying credential %s", self._session_id, mask_token(token))
        self._transition(VerifyingCredential(token=token))
        self._state_scope.submit(
            self._service.verify_credential, token, on_done=self._on_verified,
        )
        return True

    def confirm_reenroll(self) -> bool:
        """Replace the existing enrollment: delete it once, then warm up."""
        state = self._state
        if not isinstance(state, ExistingEnrollmentConflict):
            logger.debug("Ignoring re-enroll confirmation in state %s", self.tag)
            return False

        logger.info("Session %d: deleting existing enrollment of user %d",
                    self._session_id, state.identity.id)
        self._transition(VerifyingCredential(token=state.token, identity=state.identity, deleting=True))
        self._state_scope.submit(
            self._service.delete_enrollment, state.identity.id, on_done=self._on_deleted,
        )
        return True

    def decline_reenroll(self) -> bool:
        """Keep the existing enrollment and leave."""
        if not isinstance(self._state, ExistingEnrollmentConflict):
            return False
        return self.cancel()

    def cancel(self) -> bool:
        """Tear the session down and hand control back to the host.

        Accepted in every state except ``success``, which finishes on its
        own. Remote calls in flight complete but their results are dropped.
        """
        if self._state is None:
            return False
        if isinstance(self._state, Success):
            logger.debug("Ignoring cancel during success display")
            return False

        logger.info("Session %d: cancelled in state %s", self._session_id, self.tag.value)
        self._close_session("cancelled")
        if self._on_cancel is not None:
            self._on_cancel()
        return True

    def retry(self) -> bool:
        """From ``error``: start over with a fresh session."""
        if not isinstance(self._state, Error):
            logger.debug("Ignoring retry in state %s", self.tag)
            return False

        self._close_session("error")
        self._open_session()
        self._transition(AwaitingCredential())
        return True

    def close(self) -> None:
        """Host view is going away: tear down without callbacks."""
        if self._scope is not None:
            self._close_session("closed")

    # ── Credential ──

    def _on_verified(self, future: Future) -> None:
        state = self._state
        if not isinstance(state, VerifyingCredential):
            return
        try:
            result: VerificationResult = future.result()
        except Exception as e:
            self._fail(e, "Card verification failed")
            return

        identity = result.identity
        logger.info("Session %d: credential resolved to user %d (%s)",
                    self._session_id, identity.id, identity.username)
        if result.has_existing_enrollment:
            self._transition(ExistingEnrollmentConflict(token=state.token, identity=identity))
        else:
            self._enter_warmup(state.token, identity)

    def _on_deleted(self, future: Future) -> None:
        state = self._state
        if not isinstance(state, VerifyingCredential) or state.identity is None:
            return
        try:
            future.result()
        except Exception as e:
            self._fail(e, "Failed to remove the existing enrollment")
            return
        self._enter_warmup(state.token, state.identity)

    # ── Warm-up ──

    def _enter_warmup(self, token: str, identity: EnrollmentIdentity) -> None:
        self._transition(WarmingUp(token=token, identity=identity))
        if not self._video_started:
            self._video.start()
            self._video_started = True
        self._state_scope.call_every(
            self.config.timing.warmup_poll_interval_sec, self._poll_warmup, first_delay=0.0,
        )

    def _poll_warmup(self) -> None:
        state = self._state
        if not isinstance(state, WarmingUp):
            return
        timing = self.config.timing

        if state.progress is WarmupProgress.CAMERA:
            if not self._video.is_ready():
                state.attempts += 1
                if state.attempts >= timing.camera_ready_attempts:
                    self._fail(SetupTimeout("Camera failed to start. Please try again."))
                return
            logger.info("Session %d: camera ready after %d polls", self._session_id, state.attempts)
            state.progress = WarmupProgress.MODELS
            state.attempts = 0

        if state.progress is WarmupProgress.MODELS:
            if not self._analyzer.models_loaded():
                state.attempts += 1
                if state.attempts >= timing.models_ready_attempts:
                    self._fail(SetupTimeout("Face detection models failed to load."))
                return
            logger.info("Session %d: models ready after %d polls", self._session_id, state.attempts)
            state.progress = WarmupProgress.READY

        self._enter_scanning(state.token, state.identity)

    # ── Scanning ──

    def _enter_scanning(self, token: str, identity: EnrollmentIdentity) -> None:
        accumulator = HoldStillAccumulator(self.config.hold)
        self._transition(Scanning(token=token, identity=identity, accumulator=accumulator))
        timing = self.config.timing
        self._state_scope.call_every(timing.sample_interval_sec, self._sample_tick)
        self._state_scope.call_every(timing.hold_interval_sec, self._hold_tick)

    def _sample_tick(self) -> None:
        """Sampling timer: analyze one frame and leave the verdict for the hold timer."""
        state = self._state
        if not isinstance(state, Scanning):
            return

        period = self.config.timing.sample_interval_sec
        started = self._loop.time()
        frame = self._video.read()
        try:
            sample = self._analyzer.analyze(frame)
        except Exception as e:
            logger.warning("Analyzer failed, dropping tick: %s", e)
            state.dropped += 1
            return

        elapsed = self._loop.time() - started
        if elapsed > period:
            logger.warning("Analyzer took %.0f ms (> %.0f ms), dropping tick",
                           elapsed * 1000, period * 1000)
            state.dropped += 1
            return

        evaluation = evaluate_tick(sample, self._video.frame_size(), self._validator, self._gate)
        state.latest = evaluation
        state.pending = evaluation
        state.latest_frame = frame
        state.guidance = evaluation.guidance
        logger.debug("Tick: good=%s guidance=%r", evaluation.is_good, evaluation.guidance)

    def _hold_tick(self) -> None:
        """Hold timer: feed the pending verdict (or a dropped tick) to the accumulator."""
        state = self._state
        if not isinstance(state, Scanning):
            return

        evaluation = state.pending
        state.pending = None
        state.dropped = 0
        good = evaluation is not None and evaluation.is_good
        descriptor = evaluation.descriptor if evaluation is not None else None

        captured = state.accumulator.update(good, descriptor)
        self._hub.emit(HoldTickRecord(
            session_id=self._session_id,
            good=good,
            dropped=evaluation is None,
            good_ticks=state.accumulator.good_ticks,
            bad_streak=state.accumulator.bad_streak,
            guidance=state.guidance,
        ))
        if captured is None:
            return

        confidence = evaluation.sample.confidence if evaluation is not None else 0.0
        logger.info("Session %d: captured descriptor for user %d (confidence %.2f)",
                    self._session_id, state.identity.id, confidence)
        self._hub.emit(CaptureRecord(
            session_id=self._session_id, identity_id=state.identity.id, confidence=confidence,
        ))
        self._enter_committing(state, captured, confidence)

    # ── Commit ──

    def _enter_committing(self, scanning: Scanning, descriptor: np.ndarray, confidence: float) -> None:
        if descriptor is None:
            raise ValueError("Cannot commit without a captured descriptor")
        frame = scanning.latest_frame
        # Drop the scanning buffers before the move.
        scanning.latest_frame = None
        scanning.pending = None
        self._transition(Committing(
            token=scanning.token,
            identity=scanning.identity,
            descriptor=descriptor,
            confidence=confidence,
            frame=frame,
        ))
        self._commit()

    def _commit(self) -> None:
        state = self._state
        if not isinstance(state, Committing):
            return
        if state.commit_started:
            logger.debug("Commit already in flight, ignoring duplicate trigger")
            return
        state.commit_started = True

        if self.config.telemetry.enabled and state.frame is not None:
            self._send_snapshot(state.frame, state.identity.id, state.confidence)
            state.frame = None

        payload = serialize_descriptor(state.descriptor)
        self._state_scope.submit(
            self._service.commit_enrollment,
            state.identity.id,
            payload,
            state.token,
            on_done=self._on_committed,
        )

    def _on_committed(self, future: Future) -> None:
        state = self._state
        if not isinstance(state, Committing):
            return
        identity = state.identity
        try:
            enrollment_id = future.result()
        except Exception as e:
            state.descriptor = None
            error = e if isinstance(e, EnrollmentError) else CommitError(f"Failed to save face data: {e}")
            self._hub.emit(CommitRecord(
                session_id=self._session_id, identity_id=identity.id, ok=False, error=str(error),
            ))
            self._fail(error)
            return

        state.descriptor = None
        logger.info("Session %d: enrollment %s committed for user %d",
                    self._session_id, enrollment_id, identity.id)
        self._hub.emit(CommitRecord(session_id=self._session_id, identity_id=identity.id, ok=True))
        self._transition(Success(identity=identity, enrollment_id=enrollment_id))
        self._state_scope.call_later(self.config.timing.success_display_sec, self._finish_success)

    def _finish_success(self) -> None:
        state = self._state
        if not isinstance(state, Success):
            return
        self._close_session("success")
        if self._on_complete is not None:
            self._on_complete(state.identity)

    def _send_snapshot(self, frame: np.ndarray, identity_id: int, confidence: float) -> None:
        """Fire-and-forget telemetry upload; never affects the outcome."""
        jpeg_quality = self.config.telemetry.jpeg_quality
        service = self._service

        def upload() -> str:
            image = encode_snapshot(frame, jpeg_quality)
            return service.upload_telemetry_snapshot(
                image,
                SNAPSHOT_EVENT_TYPE,
                identity_id=identity_id,
                face_detected=True,
                confidence=confidence,
            )

        def done(future: Future) -> None:
            error = future.exception()
            if error is not None:
                logger.warning("Telemetry snapshot upload failed: %s", error)
            else:
                logger.debug("Telemetry snapshot stored at %s", future.result())

        self._loop.submit(upload, on_done=done)

    # ── Session plumbing ──

    def _open_session(self) -> None:
        self._session_id += 1
        self._scope = SessionScope(self._loop, name=f"session-{self._session_id}")
        self._session_started_at = self._loop.time()
        logger.info("Session %d started", self._session_id)
        self._hub.emit(SessionStartRecord(session_id=self._session_id))

    def _close_session(self, outcome: str) -> None:
        scope = self._scope
        if scope is None:
            return
        scope.close()
        self._scope = None
        self._state_scope = None
        old = self._state
        self._state = None
        self._stop_video()

        duration = self._loop.time() - self._session_started_at
        logger.info("Session %d ended: %s (%.1fs)", self._session_id, outcome, duration)
        self._hub.emit(SessionEndRecord(
            session_id=self._session_id, outcome=outcome, duration_sec=duration,
        ))
        self._notify(old, None)

    def _transition(self, new_state: State) -> None:
        old = self._state
        if self._state_scope is not None:
            self._state_scope.close()
        self._state = new_state
        self._state_scope = self._scope.child(new_state.tag.value)

        old_name = old.tag.value if old is not None else "idle"
        logger.info("Session %d: %s -> %s", self._session_id, old_name, new_state.tag.value)
        self._hub.emit(StateTransitionRecord(
            session_id=self._session_id, old_state=old_name, new_state=new_state.tag.value,
        ))
        if new_state.tag in TERMINAL:
            self._stop_video()
        self._notify(old, new_state)

    def _fail(self, error: BaseException, fallback: str = "Enrollment failed") -> None:
        message = error.message if isinstance(error, EnrollmentError) else fallback
        logger.warning("Session %d failed in state %s: %s", self._session_id, self.tag.value, error)
        self._transition(Error(message=message, error=error))

    def _stop_video(self) -> None:
        if self._video_started:
            self._video_started = False
            self._video.stop()

    def _notify(self, old: Optional[State], new: Optional[State]) -> None:
        for listener in self._listeners:
            listener(old, new)


__all__ = ["EnrollmentWorkflow", "MSG_CAPTURING", "SNAPSHOT_EVENT_TYPE"]
