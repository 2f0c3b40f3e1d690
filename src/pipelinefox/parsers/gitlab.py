"""Parser for ``.gitlab-ci.yml`` pipeline files.

Turns a GitLab CI document into a validated :class:`PipelineDescriptor`.
Only the subset the runner executes is read: stages, jobs, their
scripts and images. Everything else in the file is ignored.

Usage::

    from pipelinefox.parsers.gitlab import load_gitlab_ci

    pipeline = load_gitlab_ci(".gitlab-ci.yml", default_image="alpine:3.20")

Example YAML::

    stages: [build, test]

    default:
      image: python:3.12

    compile:
      stage: build
      script: make

    unit:
      stage: test
      before_script:
        - pip install -e .
      script:
        - pytest -q

Rules:
    - ``stages`` defaults to ``.pre, build, test, deploy, .post``.
      Non-string entries are skipped with a warning.
    - A top-level mapping with a ``script`` key is a job, unless its key
      starts with ``.`` (template) or is a reserved keyword.
    - A job without ``stage`` belongs to ``test``.
    - ``script`` is a string or a list of strings. ``before_script`` and
      ``after_script`` (job, else ``default:``, else top-level) wrap it.
    - ``image`` is a string or ``{name: ...}``. The job's image wins,
      then ``default:``/top-level, then ``default_image``.

Tags:
    pipelinefox, parser, gitlab, yaml
"""

from __future__ import annotations

from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from pipelinefox.errors import PipelineParseError, UnknownScriptShapeError
from pipelinefox.logging import get_logger
from pipelinefox.model import DEFAULT_IMAGE, Job, PipelineDescriptor

logger = get_logger(__name__)

DEFAULT_STAGES = (".pre", "build", "test", "deploy", ".post")
DEFAULT_JOB_STAGE = "test"

RESERVED_KEYWORDS = frozenset({
    "stages",
    "variables",
    "default",
    "include",
    "workflow",
    "image",
    "services",
    "cache",
    "before_script",
    "after_script",
})


class ImageSpec(BaseModel):
    """Long form of ``image:``."""

    model_config = ConfigDict(extra="ignore")

    name: str = Field(..., min_length=1)


class DefaultsSpec(BaseModel):
    """``default:`` section (and the legacy top-level equivalents)."""

    model_config = ConfigDict(extra="ignore")

    image: str | ImageSpec | None = None
    before_script: Any = None
    after_script: Any = None


class JobSpec(BaseModel):
    """One job mapping. ``script`` shapes are checked by :func:`normalize_script`."""

    model_config = ConfigDict(extra="ignore")

    stage: str = DEFAULT_JOB_STAGE
    script: Any
    image: str | ImageSpec | None = None
    before_script: Any = None
    after_script: Any = None


def normalize_script(value: Any, *, job: str, key: str = "script") -> list[str]:
    """Return ``value`` as a list of command lines.

    Raises:
        UnknownScriptShapeError: neither a string nor a list of strings.
    """
    if value is None:
        return []
    if isinstance(value, str):
        return [value]
    if isinstance(value, list) and all(isinstance(line, str) for line in value):
        return list(value)
    raise UnknownScriptShapeError(
        f"'{key}' of job {job!r} is neither a string nor a list of strings "
        f"(got {type(value).__name__})",
        job=job,
    )


def _image_name(image: str | ImageSpec | None) -> str | None:
    if isinstance(image, ImageSpec):
        return image.name
    return image


def _parse_stages(raw: Any) -> list[str]:
    if raw is None:
        return list(DEFAULT_STAGES)
    if not isinstance(raw, list):
        raise PipelineParseError(f"'stages' must be a list, got {type(raw).__name__}")

    stages: list[str] = []
    for entry in raw:
        if isinstance(entry, str):
            stages.append(entry)
        else:
            logger.warning("stage.skipped", entry=repr(entry), reason="not a string")
    return stages


def _parse_defaults(document: dict[str, Any]) -> DefaultsSpec:
    legacy = {key: document[key] for key in ("image", "before_script", "after_script") if key in document}
    section = document.get("default") or {}
    if not isinstance(section, dict):
        raise PipelineParseError(f"'default' must be a mapping, got {type(section).__name__}")
    try:
        return DefaultsSpec.model_validate({**legacy, **section})
    except ValidationError as exc:
        raise PipelineParseError(f"Invalid 'default' section: {exc}", cause=exc) from exc


def _is_job_key(key: Any, value: Any) -> bool:
    if not isinstance(key, str) or key.startswith(".") or key in RESERVED_KEYWORDS:
        return False
    if not isinstance(value, dict):
        return False
    if "script" not in value:
        logger.warning("job.skipped", job=key, reason="no script")
        return False
    return True


def _build_job(name: str, raw: dict[str, Any], defaults: DefaultsSpec) -> Job:
    try:
        spec = JobSpec.model_validate(raw)
    except ValidationError as exc:
        raise PipelineParseError(f"Invalid job {name!r}: {exc}", job=name, cause=exc) from exc

    before = spec.before_script if "before_script" in raw else defaults.before_script
    after = spec.after_script if "after_script" in raw else defaults.after_script
    commands = [
        *normalize_script(before, job=name, key="before_script"),
        *normalize_script(spec.script, job=name),
        *normalize_script(after, job=name, key="after_script"),
    ]
    image = _image_name(spec.image) or _image_name(defaults.image)
    return Job.create(name, spec.stage, commands, image=image)


def parse_gitlab_ci(content: str | bytes, *, default_image: str = DEFAULT_IMAGE) -> PipelineDescriptor:
    """Parse a ``.gitlab-ci.yml`` document.

    Raises:
        PipelineParseError: invalid YAML or not a mapping at the root.
        UnknownScriptShapeError: a script is not a string or list of strings.
        UnknownStageError: a job references an undeclared stage.
    """
    try:
        document = yaml.safe_load(content)
    except yaml.YAMLError as exc:
        raise PipelineParseError(f"Invalid YAML: {exc}", cause=exc) from exc

    if document is None:
        document = {}
    if not isinstance(document, dict):
        raise PipelineParseError(f"CI file root must be a mapping, got {type(document).__name__}")

    stages = _parse_stages(document.get("stages"))
    defaults = _parse_defaults(document)
    jobs = [
        _build_job(key, value, defaults)
        for key, value in document.items()
        if _is_job_key(key, value)
    ]
    logger.debug("pipeline.parsed", stages=len(stages), jobs=len(jobs))
    return PipelineDescriptor.create(stages, jobs, default_image=default_image)


def load_gitlab_ci(path: str | Path, *, default_image: str = DEFAULT_IMAGE) -> PipelineDescriptor:
    """Read and parse a ``.gitlab-ci.yml`` file.

    Raises:
        PipelineParseError: the file cannot be read or parsed.
    """
    path = Path(path)
    try:
        content = path.read_text(encoding="utf-8")
    except OSError as exc:
        raise PipelineParseError(f"Cannot read {path}: {exc}", cause=exc) from exc
    return parse_gitlab_ci(content, default_image=default_image)
