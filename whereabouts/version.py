"""Version information of the plugin."""

from __future__ import annotations

import platform
import sys
from typing import Optional

import semver

# Set at build time.
VERSION = ""
GIT_SHA = ""
GIT_TREE_STATE = ""
RELEASE_STATUS = "unreleased"

_OS_NAMES = {"win32": "windows", "cygwin": "windows"}
_ARCH_NAMES = {
    "x86_64": "amd64",
    "amd64": "amd64",
    "aarch64": "arm64",
    "arm64": "arm64",
    "i386": "386",
    "i686": "386",
    "x86": "386",
    "armv7l": "arm",
    "armv6l": "arm",
}


def get_version(version: Optional[str] = None) -> semver.Version:
    """Parse a "v"-prefixed version; an unparseable one gives 0.0.0."""
    text = VERSION if version is None else version
    if not text:
        raise ValueError("no version is set")
    try:
        return semver.Version.parse(text[1:])
    except ValueError:
        return semver.Version(0, 0, 0)


def get_git_sha() -> str:
    """Return the git commit the build was made from."""
    return GIT_SHA


def get_full_version(
    version: Optional[str] = None,
    git_sha: Optional[str] = None,
    git_tree_state: Optional[str] = None,
    release_status: Optional[str] = None,
) -> str:
    """Return the version, with build information for unreleased builds."""
    version = VERSION if version is None else version
    git_sha = GIT_SHA if git_sha is None else git_sha
    git_tree_state = GIT_TREE_STATE if git_tree_state is None else git_tree_state
    release_status = RELEASE_STATUS if release_status is None else release_status

    if not version:
        return "UNKNOWN"
    if release_status == "released":
        return version
    if not git_sha:
        return f"{version}-unknown"
    if git_tree_state == "dirty":
        return f"{version}-{git_sha}.dirty"
    return f"{version}-{git_sha}"


def get_full_version_with_runtime_info() -> str:
    """Return the full version followed by "<os>/<arch>"."""
    os_name = _OS_NAMES.get(sys.platform, sys.platform)
    machine = platform.machine()
    arch = _ARCH_NAMES.get(machine.lower(), machine.lower() or "unknown")
    return f"{get_full_version()} {os_name}/{arch}"