"""CI file parsers. Each turns a CI document into a ``PipelineDescriptor``."""

from pipelinefox.parsers.gitlab import load_gitlab_ci, parse_gitlab_ci

__all__ = ["load_gitlab_ci", "parse_gitlab_ci"]
