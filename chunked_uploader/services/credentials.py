"""In-process credential/locale store."""
from typing import Dict, Optional


class MemoryCredentialStore:
    """
    Minimal key/value store for the Authorization token and locale.

    Implements ICredentialStore protocol.
    """

    def __init__(self, values: Optional[Dict[str, str]] = None):
        self._values: Dict[str, str] = dict(values or {})

    def get(self, key: str) -> Optional[str]:
        return self._values.get(key)

    def set(self, key: str, value: str) -> None:
        self._values[key] = value

    def clear(self) -> None:
        self._values.clear()
