"""Script materialization: command list → executable shell script.

A job's command lines become one POSIX ``sh`` script. ``set -e`` makes the
first failing command abort the remaining ones, so the script's exit
status is the job's status, as on a CI runner.

The script is injected into the container as a single-entry tar archive
rather than passed as an argument, which avoids argument-length limits and
shell escaping.

Example:
    >>> render_script(["echo hello", "echo world"]).decode()
    '#!/bin/sh\\nset -e\\n\\necho hello\\necho world\\n'
"""

from __future__ import annotations

import io
import tarfile
import time
from collections.abc import Iterable

SCRIPT_NAME = "pipelinefox-bootstrap.sh"
SCRIPT_DIR = "/tmp"
SCRIPT_PATH = f"{SCRIPT_DIR}/{SCRIPT_NAME}"
SCRIPT_MODE = 0o755

_HEADER = "#!/bin/sh\nset -e\n\n"


def render_script(commands: Iterable[str]) -> bytes:
    """Render commands, in order, into an ``sh`` script.

    Commands are emitted verbatim. Multi-line commands (YAML block
    scalars) are kept as they are; ``sh`` reads them as written.
    """
    body = "".join(f"{command.rstrip(chr(10))}\n" for command in commands)
    if not body:
        body = "exit 0\n"
    return (_HEADER + body).encode("utf-8")


def build_script_archive(script: bytes, name: str = SCRIPT_NAME, *, mode: int = SCRIPT_MODE) -> bytes:
    """Wrap ``script`` in an uncompressed tar holding one executable file."""
    buffer = io.BytesIO()
    info = tarfile.TarInfo(name=name)
    info.size = len(script)
    info.mode = mode
    info.mtime = int(time.time())
    with tarfile.open(fileobj=buffer, mode="w") as archive:
        archive.addfile(info, io.BytesIO(script))
    return buffer.getvalue()
