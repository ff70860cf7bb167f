"""Per-step state bag."""

from typing import Any


class StateBag:
    """Key/value memory owned by a single step instance.

    Execute records facts here (what was already in place, what this step
    changed) and rollback reads them back to decide what to compensate.
    """

    def __init__(self):
        self._values: dict[str, Any] = {}

    def set(self, key: str, value: Any) -> None:
        self._values[key] = value

    def get(self, key: str, default: Any = None) -> Any:
        return self._values.get(key, default)

    def has(self, key: str) -> bool:
        return key in self._values

    def bool(self, key: str) -> bool:
        """Value as bool; missing keys are False."""
        value = self._values.get(key, False)
        if isinstance(value, str):
            return value.lower() == 'true'
        return bool(value)

    def string(self, key: str) -> str:
        value = self._values.get(key)
        return '' if value is None else str(value)

    def delete(self, key: str) -> None:
        self._values.pop(key, None)

    def update(self, values: dict[str, Any]) -> None:
        self._values.update(values)

    def clear(self) -> None:
        self._values.clear()

    def keys(self) -> list[str]:
        return list(self._values)

    def to_dict(self) -> dict[str, Any]:
        return dict(self._values)

    def __contains__(self, key: str) -> bool:
        return key in self._values

    def __len__(self) -> int:
        return len(self._values)
