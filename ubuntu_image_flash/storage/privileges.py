"""Switching between root and the invoking user.

The tool runs under sudo or pkexec. Steps that touch device nodes and
mounts run with effective uid 0; payload extraction and anything else
that handles user supplied data runs as the invoking user. Only the
effective ids change, so escalating again is always possible.
"""

from __future__ import annotations

import os
from contextlib import contextmanager
from typing import Iterator, Mapping

from ubuntu_image_flash.logging import LoggerFactory

from .exceptions import PrivilegeError, attach_cleanup_errors


log = LoggerFactory.for_system()


class Privileges:
    def __init__(self, environ: Mapping[str, str] | None = None):
        self.environ = os.environ if environ is None else environ

    def _env_id(self, *names: str) -> int:
        for name in names:
            value = self.environ.get(name)
            if value:
                try:
                    return int(value)
                except ValueError as error:
                    raise PrivilegeError("drop", f"{name}={value!r} is not an id") from error
        return 0

    @property
    def uid(self) -> int:
        """Invoking user from SUDO_UID or PKEXEC_UID, 0 when neither is set."""
        return self._env_id("SUDO_UID", "PKEXEC_UID")

    @property
    def gid(self) -> int:
        return self._env_id("SUDO_GID")

    def drop(self) -> None:
        uid, gid = self.uid, self.gid
        try:
            os.setregid(-1, gid)
        except OSError as error:
            raise PrivilegeError("drop", f"can't drop gid: {error}") from error
        try:
            os.setreuid(-1, uid)
        except OSError as error:
            raise PrivilegeError("drop", f"can't drop uid: {error}") from error
        log.trace(f"Dropped privileges to {uid}:{gid}")

    def escalate(self) -> None:
        try:
            os.setreuid(-1, 0)
            os.setregid(-1, 0)
        except OSError as error:
            raise PrivilegeError("escalate", str(error)) from error
        log.trace("Escalated privileges")

    @contextmanager
    def elevated(self) -> Iterator[None]:
        """Run the block as root and drop again on every exit path."""
        self.escalate()
        yield from self._restore(self.drop)

    @contextmanager
    def dropped(self) -> Iterator[None]:
        """Run the block as the invoking user and escalate again afterwards."""
        self.drop()
        yield from self._restore(self.escalate)

    def _restore(self, restore) -> Iterator[None]:
        try:
            yield
        except BaseException as error:
            try:
                restore()
            except PrivilegeError as restore_error:
                attach_cleanup_errors(error, [restore_error])
            raise
        restore()
