"""Filesystem storage for per-session credential material."""

import shutil
from dataclasses import dataclass
from pathlib import Path

from firezap.services.sessions import CredentialStore


@dataclass
class FileCredentialStore(CredentialStore):
    """Keeps each session's credentials in its own directory under a root."""

    root: Path

    def path_for(self, session_id: str) -> Path:
        """Return the credential directory for a session."""
        return self.root / f"session-{session_id}"

    def wipe(self, session_id: str) -> bool:
        """Recursively delete a session's credentials, if present."""
        path = self.path_for(session_id)
        if not path.exists():
            return False
        shutil.rmtree(path)
        return True
