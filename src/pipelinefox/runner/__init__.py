"""Execution engine: orchestrator, container lifecycle and output capture.

.. code-block:: text

    pipelinefox.runner
    ├── orchestrator.py  ← PipelineRunner (stages, barrier, fail-fast)
    ├── lifecycle.py     ← ContainerLifecycle (one container per job)
    ├── capture.py       ← capture_output (frames → tagged sink lines)
    └── results.py       ← JobResult, PipelineResult
"""

from pipelinefox.runner.capture import LineFormatter, Sink, capture_output
from pipelinefox.runner.lifecycle import ContainerLifecycle, LifecycleState
from pipelinefox.runner.orchestrator import PipelineRunner
from pipelinefox.runner.results import JobResult, PipelineResult

__all__ = [
    "ContainerLifecycle",
    "JobResult",
    "LifecycleState",
    "LineFormatter",
    "PipelineResult",
    "PipelineRunner",
    "Sink",
    "capture_output",
]
