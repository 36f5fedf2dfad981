"""Credential reference handling.

The core only ever holds the path of the credentials file the mount unit
consumes. Values are read solely to check the file is well formed, and
the password never leaves the ``Credential`` object.
"""

import stat
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional


@dataclass(frozen=True)
class Credential:
    """username/password/domain for the destination mount. Opaque."""
    username: str
    password: str = field(repr=False)
    domain: Optional[str] = None

    def __str__(self) -> str:
        return f"Credential(username={self.username!r}, password=***)"


@dataclass(frozen=True)
class CredentialRef:
    """Reference to a mount credentials file."""
    path: Path

    def __str__(self) -> str:
        return str(self.path)

    def load(self) -> Credential:
        """Parse the ``key=value`` credentials file.

        Raises:
            OSError: If the file cannot be read
            ValueError: If no username is present
        """
        values = {}
        with open(self.path, "r", encoding="utf-8") as f:
            for line in f:
                line = line.strip()
                if not line or line.startswith("#") or "=" not in line:
                    continue
                key, value = line.split("=", 1)
                values[key.strip().lower()] = value.strip()

        if not values.get("username"):
            raise ValueError(f"No username in credentials file {self.path}")
        return Credential(
            username=values["username"],
            password=values.get("password", ""),
            domain=values.get("domain") or None,
        )

    def check(self) -> List[str]:
        """Return problems with the referenced file (never its contents)."""
        if not self.path.exists():
            return [f"Credentials file not found: {self.path}"]
        try:
            self.load()
        except (OSError, ValueError) as e:
            return [str(e)]
        return []

    def permission_warning(self) -> Optional[str]:
        """Describe loose permissions on the file, if any."""
        try:
            mode = self.path.stat().st_mode
        except OSError:
            return None
        if mode & (stat.S_IRWXG | stat.S_IRWXO):
            return (
                f"Credentials file {self.path} is accessible by group/others "
                f"(mode {stat.S_IMODE(mode):o}); expected 600"
            )
        return None
