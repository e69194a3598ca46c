"""Host identity used in every emitted record."""

from __future__ import annotations

import os
import platform
import socket

from bumblebee.model import Endpoint

_OS_NAMES = {
    "darwin": "darwin",
    "linux": "linux",
    "windows": "windows",
    "freebsd": "freebsd",
    "openbsd": "openbsd",
    "netbsd": "netbsd",
}

_ARCH_NAMES = {
    "x86_64": "amd64",
    "amd64": "amd64",
    "aarch64": "arm64",
    "arm64": "arm64",
    "i386": "386",
    "i686": "386",
    "x86": "386",
    "armv6l": "arm",
    "armv7l": "arm",
    "ppc64le": "ppc64le",
    "s390x": "s390x",
    "riscv64": "riscv64",
}


def _os_name() -> str:
    system = platform.system().lower()
    return _OS_NAMES.get(system, system)


def _arch_name() -> str:
    machine = platform.machine().lower()
    return _ARCH_NAMES.get(machine, machine)


def _uid() -> str:
    getuid = getattr(os, "getuid", None)
    return str(getuid()) if getuid is not None else "-1"


def _username() -> str | None:
    try:
        import pwd
    except ImportError:
        pwd = None
    if pwd is not None:
        try:
            return pwd.getpwuid(os.getuid()).pw_name
        except KeyError:
            return None
    try:
        import getpass

        return getpass.getuser()
    except (OSError, KeyError, ImportError):
        return None


def current(device_id: str) -> Endpoint:
    """Return the host identity; device_id is stored verbatim."""
    ep = Endpoint(os=_os_name(), arch=_arch_name(), device_id=device_id)
    try:
        ep.hostname = socket.gethostname()
    except OSError:
        pass
    username = _username()
    if username is not None:
        ep.username = username
    ep.uid = _uid()
    return ep