"""Ordered release of acquired resources (bind mounts, placeholder files).

Resources are pushed as they are acquired and released in reverse order.
Unlike ``contextlib.ExitStack`` every release is attempted even when an
earlier one fails, and release failures never replace the error that
triggered the unwind: they are attached to it as ``cleanup_errors``.
When nothing else failed the collected failures raise ``CleanupError``.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable

from ubuntu_image_flash.logging import LoggerFactory

from .exceptions import CleanupError, attach_cleanup_errors


log = LoggerFactory.for_system()


@dataclass
class Resource:
    name: str
    release: Callable[[], object]


class ResourceStack:
    def __init__(self) -> None:
        self._resources: list[Resource] = []

    def __len__(self) -> int:
        return len(self._resources)

    def __enter__(self) -> ResourceStack:
        return self

    def __exit__(self, exc_type, exc, tb) -> bool:
        errors = self.unwind()
        if not errors:
            return False
        if exc is not None:
            attach_cleanup_errors(exc, errors)
            return False
        raise CleanupError(errors)

    def push(self, name: str, release: Callable[[], object]) -> None:
        """Register a resource that has just been acquired."""
        log.trace(f"Acquired {name}")
        self._resources.append(Resource(name, release))

    def names(self) -> list[str]:
        return [resource.name for resource in self._resources]

    def unwind(self) -> list[Exception]:
        """Release everything in reverse order, returning the failures."""
        errors: list[Exception] = []
        while self._resources:
            resource = self._resources.pop()
            try:
                resource.release()
            except Exception as error:
                log.warning(f"Failed to release {resource.name}: {error}")
                errors.append(error)
            else:
                log.trace(f"Released {resource.name}")
        return errors
