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

"""Stage store: durable per-run state shared between stages and processes.

Every value lives in its own JSON file under ``<run_dir>/.test-data/`` so that
a later invocation, with some stages skipped, can pick up what an earlier
invocation saved.
"""

from __future__ import annotations

import json
import shutil
from pathlib import Path
from typing import TypeVar

from pydantic import BaseModel, ValidationError

from stage_harness import logger
from stage_harness.constants import STATE_DIR_NAME
from stage_harness.errors import MissingState

ModelT = TypeVar("ModelT", bound=BaseModel)


def state_dir(run_dir: str | Path) -> Path:
    """Return the folder holding persisted values for *run_dir*."""
    return Path(run_dir) / STATE_DIR_NAME


def _key_path(run_dir: str | Path, key: str) -> Path:
    if not key or "/" in key or "\\" in key or key.startswith("."):
        raise ValueError(f"Invalid state key: {key!r}")
    return state_dir(run_dir) / f"{key}.json"


def _write(run_dir: str | Path, key: str, payload: str) -> None:
    path = _key_path(run_dir, key)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(payload, encoding="utf-8")
    logger.debug("Saved '%s' to %s", key, path)


def _read(run_dir: str | Path, key: str) -> str:
    path = _key_path(run_dir, key)
    if not Path(run_dir).is_dir():
        raise MissingState(str(run_dir), key, "run directory does not exist")
    if not path.is_file():
        raise MissingState(str(run_dir), key)
    logger.debug("Loading '%s' from %s", key, path)
    return path.read_text(encoding="utf-8")


def save_string(run_dir: str | Path, key: str, value: str) -> None:
    """Persist a plain string under *key*."""
    _write(run_dir, key, json.dumps(value))


def load_string(run_dir: str | Path, key: str) -> str:
    """Load a string saved with :func:`save_string`.

    Raises:
        MissingState: If nothing was saved, or the saved value is not a string.
    """
    try:
        value = json.loads(_read(run_dir, key))
    except json.JSONDecodeError as err:
        raise MissingState(str(run_dir), key, "unreadable") from err
    if not isinstance(value, str):
        raise MissingState(str(run_dir), key, "not a string value")
    return value


def save_bundle(run_dir: str | Path, key: str, bundle: BaseModel) -> None:
    """Persist a structured option bundle under *key*."""
    _write(run_dir, key, bundle.model_dump_json(indent=2))


def load_bundle(run_dir: str | Path, key: str, model_cls: type[ModelT]) -> ModelT:
    """Load a bundle saved with :func:`save_bundle` and validate it as *model_cls*.

    Raises:
        MissingState: If nothing was saved, or the file does not parse as *model_cls*.
    """
    payload = _read(run_dir, key)
    try:
        return model_cls.model_validate_json(payload)
    except ValidationError as err:
        raise MissingState(str(run_dir), key, f"not a valid {model_cls.__name__}") from err


def is_saved(run_dir: str | Path, key: str) -> bool:
    return _key_path(run_dir, key).is_file()


def saved_keys(run_dir: str | Path) -> list[str]:
    folder = state_dir(run_dir)
    if not folder.is_dir():
        return []
    return sorted(path.stem for path in folder.glob("*.json"))


def clear(run_dir: str | Path) -> None:
    """Remove every persisted value for *run_dir*. The run directory itself is kept."""
    folder = state_dir(run_dir)
    if folder.exists():
        shutil.rmtree(folder)
        logger.info("Removed persisted state in %s", folder)
