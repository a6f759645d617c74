"""Persistent project state: settings (model, permissions) and session history.

Both stores keep their whole state in memory and rewrite a JSON file under
<project>/.stepwise/ after every mutation, atomically, so an interrupted
process never leaves a half-written file behind.
"""

import json
import os
import tempfile
from pathlib import Path

from . import fmt
from .actions import CAPABILITIES
from .conversation import Session, Turn
from .errors import ConfigError, StorageError
from .permissions import ALLOW, ASK, MODES

STATE_DIR = ".stepwise"
SETTINGS_FILE = "settings.json"
HISTORY_FILE = "history.json"
DEFAULT_MODEL = "gemini/gemini-3-flash-preview"


def state_dir(project_dir) -> Path:
    return Path(project_dir) / STATE_DIR


def atomic_write_json(path: Path, data) -> None:
    """Write JSON to a sibling temp file, fsync it, then rename over path.

    Raises:
        StorageError: If any step fails. The previous file is left intact.
    """
    tmp_name = None
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(
            prefix=f".{path.name}.", suffix=".tmp", dir=path.parent
        )
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=2, ensure_ascii=False)
            f.write("\n")
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_name, path)
    except OSError as e:
        if tmp_name is not None:
            try:
                os.unlink(tmp_name)
            except OSError:
                pass
        raise StorageError(f"failed to write {path}: {e}") from e


class SettingsStore:
    """Model choice and per-capability permission records (settings.json)."""

    def __init__(self, project_dir, default_model: str = DEFAULT_MODEL):
        self.path = state_dir(project_dir) / SETTINGS_FILE
        self.default_model = default_model
        self.settings = self._load()

    def _defaults(self) -> dict:
        return {"model": self.default_model, "permissions": {}}

    def _load(self) -> dict:
        if not self.path.is_file():
            return self._defaults()
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except json.JSONDecodeError as e:
            raise ConfigError(f"{self.path}: invalid JSON: {e}") from e
        except OSError as e:
            raise ConfigError(f"{self.path}: cannot read file: {e}") from e
        if not isinstance(data, dict):
            raise ConfigError(f"{self.path}: expected a JSON object at top level")
        settings = self._defaults()
        if isinstance(data.get("model"), str) and data["model"]:
            settings["model"] = data["model"]
        perms = data.get("permissions") or {}
        if not isinstance(perms, dict):
            raise ConfigError(f"{self.path}: 'permissions' must be a JSON object")
        settings["permissions"] = perms
        return settings

    def _save(self) -> None:
        atomic_write_json(self.path, self.settings)

    @property
    def model(self) -> str:
        return self.settings["model"]

    def set_model(self, model: str) -> None:
        self.settings["model"] = model
        self._save()

    def get_permission(self, capability: str) -> str:
        record = self.settings["permissions"].get(capability)
        if isinstance(record, dict) and record.get("mode") in MODES:
            return record["mode"]
        return ASK

    def is_allowed(self, capability: str) -> bool:
        return self.get_permission(capability) == ALLOW

    def set_permission(self, capability: str, mode: str) -> None:
        if capability not in CAPABILITIES:
            raise ValueError(f"unknown capability {capability!r}")
        if mode not in MODES:
            raise ValueError(f"invalid permission mode {mode!r}")
        self.settings["permissions"][capability] = {"mode": mode}
        self._save()

    def reset(self) -> None:
        """Forget every permission grant and go back to the default model."""
        self.settings = self._defaults()
        self._save()


class HistoryStore:
    """All sessions of a project (history.json), with one current session."""

    def __init__(self, project_dir):
        self.path = state_dir(project_dir) / HISTORY_FILE
        self.sessions: list[Session] = self._load()
        self.current_session: Session | None = None

    def _load(self) -> list[Session]:
        if not self.path.is_file():
            return []
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
            return [Session.from_dict(s) for s in data.get("sessions", [])]
        except (json.JSONDecodeError, AttributeError, KeyError, TypeError, ValueError):
            fmt.warning(f"invalid history JSON at {self.path}, using empty history")
            return []
        except OSError as e:
            raise StorageError(f"cannot read {self.path}: {e}") from e

    def _save(self) -> None:
        atomic_write_json(self.path, {"sessions": [s.to_dict() for s in self.sessions]})

    def _require_current(self) -> Session:
        if self.current_session is None:
            raise StorageError("no active session")
        return self.current_session

    def create_session(self) -> Session:
        session = Session.new()
        self.sessions.append(session)
        self.current_session = session
        self._save()
        return session

    def last_session(self) -> Session | None:
        return self.sessions[-1] if self.sessions else None

    def resume_last_session(self) -> Session | None:
        session = self.last_session()
        if session is not None:
            self.current_session = session
        return session

    def get_session(self, session_id: str) -> Session | None:
        for session in self.sessions:
            if session.id == session_id:
                return session
        return None

    def get_messages(self) -> list[Turn]:
        if self.current_session is None:
            return []
        return list(self.current_session.turns)

    def add_message(self, turn: Turn) -> None:
        self._require_current().turns.append(turn)
        self._save()

    def set_current_session_messages(self, turns: list[Turn]) -> None:
        self._require_current().turns = list(turns)
        self._save()

    def clear_current_session(self) -> None:
        self.current_session = None

    def session_count(self) -> int:
        return len(self.sessions)
