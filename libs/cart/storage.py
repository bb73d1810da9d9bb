"""File-backed cart persistence for clients (the browser's localStorage, on disk)."""

import json
import os
import tempfile
from pathlib import Path
from typing import Union

from libs.cart.store import CartStore
from libs.common.logging import get_logger

logger = get_logger(__name__)


class JsonFileCartStorage:
    """Persist one cart snapshot as JSON under a fixed name."""

    def __init__(self, path: Union[str, Path], name: str = "amargo-dulce-cart"):
        self.path = Path(path)
        self.name = name

    def _read_all(self) -> dict:
        if not self.path.exists():
            return {}
        try:
            data = json.loads(self.path.read_text(encoding="utf-8") or "{}")
        except (OSError, ValueError) as e:
            logger.warning("Ignoring unreadable cart file %s: %s", self.path, e)
            return {}
        return data if isinstance(data, dict) else {}

    def load(self) -> CartStore:
        """Load and migrate the stored cart; an absent or broken file is an empty cart."""
        return CartStore.from_snapshot(self._read_all().get(self.name))

    def save(self, store: CartStore) -> None:
        data = self._read_all()
        data[self.name] = store.snapshot()
        self.path.parent.mkdir(parents=True, exist_ok=True)
        # write-then-rename so a crash never leaves half a file behind
        fd, tmp = tempfile.mkstemp(dir=self.path.parent, suffix=".tmp")
        with os.fdopen(fd, "w", encoding="utf-8") as fh:
            json.dump(data, fh, ensure_ascii=False)
        os.replace(tmp, self.path)

    def clear(self) -> None:
        data = self._read_all()
        if data.pop(self.name, None) is not None:
            self.path.write_text(json.dumps(data, ensure_ascii=False), encoding="utf-8")
