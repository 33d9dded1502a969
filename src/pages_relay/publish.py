"""
Artifact publishing.

``swap`` builds the new tree next to the destination and renames it into
place, so readers see either the previous site or the new one. ``overlay``
copies over the existing destination in place, keeping files the new build
no longer produces.

A destination that is a symlink (``~/site -> /var/www/blog``) is resolved
first, so the directory it points at is the one that gets updated.
"""

import os
import shutil
import uuid
from pathlib import Path

from sanic.log import logger

from pages_relay.exceptions import ArtifactPublishFailure


def _fail(message: str, error: Exception | None = None) -> ArtifactPublishFailure:
    return ArtifactPublishFailure(
        message, stage="publish", output=str(error) if error else ""
    )


def _remove(path: Path) -> None:
    if path.is_symlink() or not path.is_dir():
        path.unlink()
    else:
        shutil.rmtree(path)


def _clear_conflicts(source: Path, destination: Path) -> None:
    """
    Remove destination entries that copytree cannot copy over.

    Links are never written through: an existing link is unlinked so the
    source entry replaces it, and a source link replaces whatever is there.
    """
    for root, dirnames, filenames in os.walk(source):
        relative = Path(root).relative_to(source)
        for name in dirnames + filenames:
            src = Path(root) / name
            dst = destination / relative / name
            if not os.path.lexists(dst):
                continue
            if dst.is_symlink():
                dst.unlink()
            elif src.is_symlink():
                _remove(dst)
            elif src.is_dir() != dst.is_dir():
                _remove(dst)


def publish_overlay(source: Path, destination: Path) -> None:
    try:
        if destination.is_dir():
            _clear_conflicts(source, destination)
        shutil.copytree(source, destination, symlinks=True, dirs_exist_ok=True)
    except (OSError, shutil.Error) as e:
        raise _fail(f"Copying {source} to {destination} failed", e) from e


def publish_swap(source: Path, destination: Path) -> None:
    parent = destination.parent
    token = uuid.uuid4().hex[:8]
    staging = parent / f".{destination.name}.staging-{token}"
    previous = parent / f".{destination.name}.previous-{token}"

    try:
        parent.mkdir(parents=True, exist_ok=True)
        shutil.copytree(source, staging, symlinks=True)
    except (OSError, shutil.Error) as e:
        shutil.rmtree(staging, ignore_errors=True)
        raise _fail(f"Staging {source} next to {destination} failed", e) from e

    moved = False
    try:
        if os.path.lexists(destination):
            os.replace(destination, previous)
            moved = True
        os.replace(staging, destination)
    except OSError as e:
        if moved and not os.path.lexists(destination):
            os.replace(previous, destination)
        shutil.rmtree(staging, ignore_errors=True)
        raise _fail(f"Swapping {staging} into {destination} failed", e) from e

    if moved:
        try:
            _remove(previous)
        except OSError as e:
            logger.error("Removing previous site %s failed: %s", previous, e)


def publish_tree(source: Path, destination: Path, mode: str = "swap") -> None:
    if not source.is_dir():
        raise _fail(f"Generated output {source} does not exist")

    destination = destination.resolve()
    logger.debug("Publishing %s to %s (%s)", source, destination, mode)
    if mode == "overlay":
        publish_overlay(source, destination)
    else:
        publish_swap(source, destination)
