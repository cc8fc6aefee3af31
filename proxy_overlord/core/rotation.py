"""Two-generation directory rotation.

Before every reset the log and cache directories are rotated so evidence
from the previous two runs survives: ``dir`` -> ``dir.1`` -> ``dir.2``.
Whatever was at ``dir.2`` is discarded.
"""

import logging
import shutil
from pathlib import Path

logger = logging.getLogger(__name__)

GENERATIONS = 2


def backup_path(directory: Path, generation: int) -> Path:
    """Path of the given backup generation (1 = most recent)."""
    return directory.with_name(f"{directory.name}.{generation}")


def rotate_directory(directory: Path) -> None:
    """Rotate ``directory`` and recreate it empty.

    Args:
        directory: Directory to rotate; it need not exist.
    """
    oldest = backup_path(directory, GENERATIONS)
    if oldest.exists():
        logger.debug(f"Discarding {oldest}")
        shutil.rmtree(oldest)

    for generation in range(GENERATIONS - 1, 0, -1):
        source = backup_path(directory, generation)
        if source.exists():
            source.rename(backup_path(directory, generation + 1))

    if directory.exists():
        directory.rename(backup_path(directory, 1))
        logger.info(f"Rotated {directory}")

    directory.mkdir(parents=True, exist_ok=True)
