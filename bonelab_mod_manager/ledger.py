"""Persisted set of manifests already subscribed on mod.io."""

import logging
from pathlib import Path

logger = logging.getLogger(__name__)


class LedgerError(Exception):
    """Raised when the ledger file cannot be read or written."""

    pass


class SubscriptionLedger:
    """
    Newline separated list of manifest paths known to be subscribed.

    The ledger only saves redundant subscribe calls; losing it is harmless.
    Every ``mark_subscribed`` appends to the file straight away so an
    interrupted run keeps its progress.
    """

    def __init__(self, path: Path):
        self.path = Path(path)
        self._paths: dict[str, None] = {}

    def __contains__(self, local_path: object) -> bool:
        return str(local_path) in self._paths

    def __len__(self) -> int:
        return len(self._paths)

    def __iter__(self):
        return iter(self._paths)

    def load(self) -> None:
        """Load the ledger. A missing file is an empty ledger."""
        self._paths = {}
        try:
            text = self.path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return
        except OSError as e:
            raise LedgerError(f"Cannot read {self.path}: {e}") from e
        for line in text.splitlines():
            line = line.strip()
            if line:
                self._paths[line] = None

    def is_subscribed(self, local_path: str | Path) -> bool:
        return str(local_path) in self._paths

    def mark_subscribed(self, local_path: str | Path) -> None:
        """Record a subscription and append it to the ledger file."""
        key = str(local_path)
        if key in self._paths:
            return
        self._paths[key] = None
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with open(self.path, "a", encoding="utf-8") as f:
                f.write(key + "\n")
        except OSError as e:
            raise LedgerError(f"Cannot write {self.path}: {e}") from e

    def save(self) -> None:
        """Rewrite the whole ledger, one path per line."""
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with open(self.path, "w", encoding="utf-8") as f:
                for key in self._paths:
                    f.write(key + "\n")
        except OSError as e:
            raise LedgerError(f"Cannot write {self.path}: {e}") from e
        logger.debug("Saved %d ledger entries to %s", len(self._paths), self.path)
