"""Module for persisting the signed-in session across restarts."""
import json
import logging
from pathlib import Path
from typing import Optional

from monoshelf.core.models import SessionPayload
from monoshelf.utils.paths import ensure_dir_exists

logger = logging.getLogger(__name__)

SESSION_KEY = "mono-shelf-session"

class SessionStore:
    """
    One JSON document on disk holding the last SessionPayload under a fixed key.
    Absence of the key means logged out.
    """

    def __init__(self, path: Path, key: str = SESSION_KEY):
        self.path = Path(path).expanduser()
        self.key = key

    def load(self) -> Optional[SessionPayload]:
        """Load the cached payload, or None if there is none or it is unreadable."""
        if not self.path.exists():
            return None

        try:
            with open(self.path, 'r', encoding='utf-8') as f:
                data = json.load(f)
            raw = data.get(self.key) if isinstance(data, dict) else None
            if raw is None:
                return None
            return SessionPayload.from_dict(raw)
        except (OSError, ValueError, KeyError, TypeError) as e:
            logger.warning("Ignoring unreadable session cache %s: %s", self.path, e)
            return None

    def save(self, payload: SessionPayload) -> None:
        """Replace the cached payload."""
        ensure_dir_exists(self.path.parent)
        data = {self.key: payload.to_dict()}
        with open(self.path, 'w', encoding='utf-8') as f:
            json.dump(data, f, indent=2, ensure_ascii=False)

    def clear(self) -> None:
        if self.path.exists():
            self.path.unlink()
