# /*
# Copyright 2026 The Grove Authors.
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.
# */

"""Utility functions for unique ids, flag values, ports, and command checks."""

from __future__ import annotations

import secrets
import socket
from typing import Any

import sh

from stage_harness.constants import FALSY_FLAG_VALUES, TUNNEL_LOCALHOST, UNIQUE_ID_ALPHABET, UNIQUE_ID_LENGTH


def unique_id(length: int = UNIQUE_ID_LENGTH) -> str:
    """Generate a short base-62 id for naming cloud and workload resources.

    Args:
        length: Number of characters.

    Returns:
        Random id such as ``a8Xq2Z``. Lowercase it before using it in
        Kubernetes or GCP names.
    """
    return "".join(secrets.choice(UNIQUE_ID_ALPHABET) for _ in range(length))


def resolve_bool_flag(value: Any) -> bool:
    """Resolve a loosely-typed flag value (env string, None, bool) to a bool.

    Args:
        value: Raw value, e.g. the content of a ``SKIP_*`` variable.

    Returns:
        False for None and for strings such as ``""``, ``0`` or ``false``;
        otherwise the truthiness of *value*.
    """
    if value is None:
        return False
    if isinstance(value, str):
        return value.strip().lower() not in FALSY_FLAG_VALUES
    return bool(value)


def find_free_port() -> int:
    """Ask the OS for an unused local TCP port."""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.bind((TUNNEL_LOCALHOST, 0))
        return sock.getsockname()[1]


def require_commands(*cmds: str) -> None:
    """Check that every command in *cmds* resolves on PATH.

    Every command is looked up before failing.

    Raises:
        RuntimeError: Naming every missing command.
    """
    missing = [cmd for cmd in cmds if not sh.which(cmd)]
    if missing:
        raise RuntimeError(f"Required commands not found on PATH: {', '.join(missing)}. Please install them first.")


def command_error_output(err: sh.ErrorReturnCode, limit: int = 500) -> str:
    """Return the combined, decoded stdout/stderr of a failed command, truncated to *limit*."""
    output = err.stdout.decode(errors="replace") + err.stderr.decode(errors="replace")
    return output.strip()[:limit]
