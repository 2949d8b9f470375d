"""simulate command: run one scripted session on a manual clock.

Prints every state transition and every change of the on-screen guidance,
with simulated timestamps.
"""

from typing import Dict, List, Optional

from faceenroll.config import EnrollmentConfig
from faceenroll.errors import CommitError
from faceenroll.observability import FileSink, MemorySink, ObservabilityHub, TraceLevel
from faceenroll.runtime.loop import EventLoop, ManualClock
from faceenroll.services.codec import serialize_descriptor
from faceenroll.store import EnrollmentStore
from faceenroll.testing import (
    FakeIdentityService,
    FakeVideoSource,
    ManualExecutor,
    ScriptedAnalyzer,
    face_sample,
    make_descriptor,
)
from faceenroll.types import DetectionSample, Expression, ExpressionType, EnrollmentIdentity
from faceenroll.workflow import EnrollmentWorkflow, WorkflowState

DEMO_CARD = "DEMO-0001"


def _approach_script(width: int, height: int) -> List[DetectionSample]:
    """Person walks up, adjusts, smiles, then holds still."""
    kw = dict(frame_width=width, frame_height=height)
    smiling = Expression(ExpressionType.HAPPY, 0.97)
    return (
        [DetectionSample.empty()] * 5
        + [face_sample(size_ratio=0.10, **kw)] * 5
        + [face_sample(offset=(0.3 * width, 0.0), **kw)] * 4
        + [face_sample(yaw=30.0, **kw)] * 3
        + [face_sample(expression=smiling, **kw)] * 3
        + [face_sample(**kw)]
    )


def run_simulate(args) -> int:
    config = EnrollmentConfig.from_yaml(args.config) if args.config else EnrollmentConfig()
    scenario = args.scenario

    hub = ObservabilityHub()
    if args.trace != "off":
        sink = FileSink(args.trace_output) if args.trace_output else MemorySink()
        hub.configure(level=TraceLevel[args.trace.upper()], sinks=[sink])

    clock = ManualClock()
    executor = ManualExecutor()
    loop = EventLoop(clock=clock, executor=executor)

    store = EnrollmentStore(descriptor_dim=config.quality.descriptor_dim)
    user = store.add_user("Demo User", "demo", DEMO_CARD)
    if scenario == "reenroll":
        store.commit_enrollment(
            user.id, serialize_descriptor(make_descriptor(seed=1, dim=config.quality.descriptor_dim)), DEMO_CARD,
        )
    service = FakeIdentityService(store)
    if scenario == "commit-fail":
        service.fail["commit_enrollment"] = CommitError("Failed to save face data. Please try again.")

    video = FakeVideoSource(ready_after=3)
    if scenario == "too-far":
        script = [face_sample(size_ratio=0.10, frame_width=video.width, frame_height=video.height)]
    else:
        script = _approach_script(video.width, video.height)
    analyzer = ScriptedAnalyzer(script, models_ready_after=5)

    outcome: Dict[str, Optional[str]] = {"result": None}

    def on_complete(identity: EnrollmentIdentity) -> None:
        outcome["result"] = "success"
        print(f"[{clock.time():6.2f}s] enrolled {identity.name} ({identity.username})")

    def on_cancel() -> None:
        outcome["result"] = "cancelled"

    workflow = EnrollmentWorkflow(
        loop, video, analyzer, service, config=config,
        on_complete=on_complete, on_cancel=on_cancel, hub=hub,
    )

    def on_transition(old, new) -> None:
        if new is not None:
            print(f"[{clock.time():6.2f}s] state: {new.tag.value}")

    workflow.add_listener(on_transition)

    workflow.start()
    workflow.on_credential(DEMO_CARD)

    step = config.timing.sample_interval_sec
    guidance = None
    while workflow.active and clock.time() < args.max_seconds:
        executor.run_all()
        loop.advance(step)

        if workflow.tag is WorkflowState.EXISTING_ENROLLMENT_CONFLICT:
            print(f"[{clock.time():6.2f}s] existing enrollment found, confirming re-enroll")
            workflow.confirm_reenroll()
        elif workflow.tag is WorkflowState.ERROR:
            print(f"[{clock.time():6.2f}s] error: {workflow.guidance}")
            outcome["result"] = "error"
            workflow.close()
            break

        if workflow.guidance is not None and workflow.guidance != guidance:
            guidance = workflow.guidance
            print(f"[{clock.time():6.2f}s] guidance: {guidance}")

    if workflow.active:
        print(f"[{clock.time():6.2f}s] time limit reached, cancelling")
        workflow.cancel()

    executor.run_all()
    loop.advance(0)
    loop.close()
    hub.shutdown()

    print(f"Outcome: {outcome['result']}")
    return 0 if outcome["result"] == "success" else 1
