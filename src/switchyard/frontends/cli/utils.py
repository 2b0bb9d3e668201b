"""Shared utilities for CLI commands."""

from __future__ import annotations

import importlib
import importlib.util
import sys
from pathlib import Path
from types import ModuleType

from switchyard.core.graph import NodeGraph
from switchyard.core.pipeline import Pipeline, PipelineConfig
from switchyard.core.state import FileStateManager


class TargetError(Exception):
    """A ``module:attr`` target could not be resolved to a pipeline."""


def load_env(path: Path | None = None) -> bool:
    """Load ``.env`` from the working directory (or ``path``) if present.

    Existing environment variables win over values from the file.

    Returns:
        True if a file was loaded.
    """
    from dotenv import load_dotenv

    env_file = path if path is not None else Path.cwd() / ".env"
    if not env_file.exists():
        return False
    return load_dotenv(env_file, override=False)


def _import_module(module_ref: str) -> ModuleType:
    if module_ref.endswith(".py"):
        path = Path(module_ref).resolve()
        if not path.exists():
            raise TargetError(f"File not found: {module_ref}")
        spec = importlib.util.spec_from_file_location(path.stem, path)
        if spec is None or spec.loader is None:
            raise TargetError(f"Cannot import {module_ref}")
        module = importlib.util.module_from_spec(spec)
        spec.loader.exec_module(module)
        return module

    # Like `python -m`, resolve modules relative to the working directory.
    cwd = str(Path.cwd())
    if cwd not in sys.path:
        sys.path.insert(0, cwd)
    try:
        return importlib.import_module(module_ref)
    except ImportError as e:
        raise TargetError(f"Cannot import module '{module_ref}': {e}") from e


def load_pipeline(target: str) -> Pipeline:
    """Resolve a ``module:attr`` (or ``path/to/file.py:attr``) target.

    The attribute may be a Pipeline, a NodeGraph (wrapped in a pipeline
    named after the attribute), or a zero-argument callable returning
    either.

    Raises:
        TargetError: If the target is malformed or does not resolve.
    """
    module_ref, sep, attr = target.rpartition(":")
    if not sep or not module_ref or not attr:
        raise TargetError(f"Target must look like 'module:attr', got '{target}'")

    module = _import_module(module_ref)
    try:
        obj = getattr(module, attr)
    except AttributeError as e:
        raise TargetError(f"'{module_ref}' has no attribute '{attr}'") from e

    if callable(obj) and not isinstance(obj, (Pipeline, NodeGraph)):
        obj = obj()

    if isinstance(obj, NodeGraph):
        return Pipeline(PipelineConfig(id=attr), obj)
    if isinstance(obj, Pipeline):
        return obj
    raise TargetError(f"'{target}' is not a Pipeline or NodeGraph (got {type(obj).__name__})")


def get_state_manager(state_dir: str | None) -> FileStateManager:
    """File state manager rooted at ``state_dir`` or the default directory."""
    return FileStateManager(Path(state_dir) if state_dir else None)
