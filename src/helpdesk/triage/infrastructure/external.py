"""
Triage External Integrations
============================

Priority rules file loading with hot reload:
- PyYAML for parsing
- watchdog for change notifications
"""

import threading
from pathlib import Path
from typing import Optional

import yaml
from pydantic import ValidationError
from watchdog.events import FileSystemEventHandler
from watchdog.observers import Observer

from helpdesk.core import ConfigurationException
from helpdesk.shared.infrastructure.logging import get_logger
from helpdesk.triage.domain import DEFAULT_RULES, PriorityRules

logger = get_logger(__name__)


class RulesFileHandler(FileSystemEventHandler):
    """Watchdog event handler for rules file changes."""

    def __init__(self, manager: "RulesConfigManager", path: Path):
        self.manager = manager
        self.path = path
        super().__init__()

    def _matches(self, src_path) -> bool:
        return Path(src_path).resolve() == self.path.resolve()

    def on_modified(self, event):
        if not event.is_directory and self._matches(event.src_path):
            logger.info("Rules file changed", extra={"path": str(event.src_path)})
            self.manager.reload()

    def on_created(self, event):
        self.on_modified(event)


class RulesConfigManager:
    """
    Thread-safe priority rules holder with hot-reload support.

    A missing file means built-in defaults. A failed reload keeps the rules
    currently in use.
    """

    def __init__(self):
        self._rules: PriorityRules = DEFAULT_RULES
        self._lock = threading.Lock()
        self._path: Optional[Path] = None
        self._observer = None

    def load(self, path: Path) -> PriorityRules:
        """Initial load; an invalid file is a configuration error."""
        self._path = Path(path)
        try:
            rules = self._load_from_file(self._path)
        except (yaml.YAMLError, ValidationError, TypeError) as e:
            raise ConfigurationException(
                f"Invalid priority rules file: {self._path}",
                details={"error": str(e)}
            ) from e
        with self._lock:
            self._rules = rules
        return rules

    def _load_from_file(self, path: Path) -> PriorityRules:
        if not path.exists():
            logger.warning(f"Rules file not found: {path}, using defaults")
            return DEFAULT_RULES

        with open(path, "r") as f:
            data = yaml.safe_load(f) or {}

        if not isinstance(data, dict):
            raise TypeError("rules file must contain a mapping")

        return PriorityRules(**data)

    def reload(self) -> bool:
        """Reload rules from file."""
        if self._path is None:
            return False

        try:
            new_rules = self._load_from_file(self._path)
        except (OSError, yaml.YAMLError, ValidationError, TypeError) as e:
            logger.error(f"Failed to reload priority rules: {e}")
            return False

        with self._lock:
            self._rules = new_rules
        logger.info("Priority rules reloaded successfully")
        return True

    def start_watching(self) -> None:
        """Start watching the rules file; skipped when the file does not exist."""
        if self._path is None:
            raise RuntimeError("Rules not loaded. Call load() first.")

        if not self._path.exists():
            logger.info(f"Rules file doesn't exist, skipping file watch: {self._path}")
            return

        try:
            self._observer = Observer()
            self._observer.schedule(
                RulesFileHandler(self, self._path),
                str(self._path.resolve().parent),
                recursive=False
            )
            self._observer.start()
            logger.info(f"Started watching rules file: {self._path}")
        except OSError as e:
            logger.warning(f"File watching not available, using static rules: {e}")
            self._observer = None

    def stop_watching(self) -> None:
        """Stop watching (safe to call even if not watching)."""
        if self._observer is not None:
            self._observer.stop()
            self._observer.join(timeout=5)
            self._observer = None

    @property
    def rules(self) -> PriorityRules:
        """Current rules."""
        with self._lock:
            return self._rules
