"""Atomic file I/O for persisted pipeline documents."""

import logging
import os
from pathlib import Path
from typing import Optional, Type, TypeVar

from pydantic import BaseModel, ValidationError

logger = logging.getLogger(__name__)

M = TypeVar("M", bound=BaseModel)


def atomic_write_json(file_path: Path, content: str, max_retries: int = 3) -> None:
    """
    Atomically write content to a file using temp file + rename.

    Readers never observe a half-written document, so a crash mid-write
    leaves the previous version in place.

    Args:
        file_path: Target file path (parent directories are created)
        content: Content to write (typically JSON string)
        max_retries: Maximum number of retry attempts on failure

    Raises:
        OSError: If write fails after all retries
    """
    file_path.parent.mkdir(parents=True, exist_ok=True)
    tmp_file = file_path.with_suffix(f'{file_path.suffix}.tmp.{os.getpid()}')

    last_error = None
    for attempt in range(max_retries):
        try:
            tmp_file.write_text(content)
            tmp_file.replace(file_path)
            return
        except OSError as e:
            last_error = e
            if attempt < max_retries - 1:
                logger.warning(
                    f"Failed to write {file_path} (attempt {attempt + 1}/{max_retries}): {e}"
                )
        finally:
            if tmp_file.exists():
                try:
                    tmp_file.unlink()
                except OSError:
                    pass

    logger.error(f"Failed to write {file_path} after {max_retries} attempts: {last_error}")
    raise last_error


def atomic_write_model(file_path: Path, model: BaseModel, indent: int = 2) -> None:
    """Atomically write a Pydantic model to a JSON file."""
    atomic_write_json(file_path, model.model_dump_json(indent=indent))


def read_model(file_path: Path, model_cls: Type[M]) -> Optional[M]:
    """
    Load a model from JSON, returning None if the file is absent or unreadable.

    A corrupt document is logged and treated as missing; the next write
    replaces it.
    """
    if not file_path.exists():
        return None
    try:
        return model_cls.model_validate_json(file_path.read_text())
    except (OSError, ValidationError) as e:
        logger.warning(f"Ignoring unreadable {file_path}: {e}")
        return None
