"""
pipelinefox - run CI pipelines locally before pushing them.

Every job of a pipeline runs in its own disposable container, stage by
stage, with the job's output streamed back line by line.

Usage::

    from pipelinefox import PipelineRunner, load_gitlab_ci
    from pipelinefox.runtimes import DockerCliRuntime

    pipeline = load_gitlab_ci(".gitlab-ci.yml")
    runner = PipelineRunner(DockerCliRuntime.from_path())
    result = runner.run_pipeline_sync(pipeline, sys.stdout.buffer, sys.stderr.buffer)
"""

__version__ = "0.1.0"

from pipelinefox.detector import find_ci_file
from pipelinefox.errors import ErrorCategory, PipelineFoxError
from pipelinefox.model import DEFAULT_IMAGE, Job, PipelineDescriptor
from pipelinefox.parsers import load_gitlab_ci, parse_gitlab_ci
from pipelinefox.runner import JobResult, PipelineResult, PipelineRunner
from pipelinefox.settings import PipelineFoxSettings, get_settings

__all__ = [
    "__version__",
    "DEFAULT_IMAGE",
    "ErrorCategory",
    "Job",
    "JobResult",
    "PipelineDescriptor",
    "PipelineFoxError",
    "PipelineResult",
    "PipelineRunner",
    "PipelineFoxSettings",
    "find_ci_file",
    "get_settings",
    "load_gitlab_ci",
    "parse_gitlab_ci",
]
