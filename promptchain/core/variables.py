"""Per-run variable store.

One VariableStore exists per run and is never shared.  Keys are strings,
values are JSON-like.  Last write wins; nothing is removed mid-run.
"""

import copy
from collections.abc import Iterator, Mapping
from typing import Any, Optional

from promptchain.exceptions import ChainValidationError
from promptchain.types import GlobalVariable


class VariableStore(Mapping):
    """Mutable name → value mapping handed to handlers as a read-only Mapping."""

    def __init__(self, initial: Optional[Mapping[str, Any]] = None):
        self._values: dict[str, Any] = dict(initial or {})

    @classmethod
    def seed(
        cls,
        global_variables: tuple[GlobalVariable, ...],
        inputs: Optional[Mapping[str, Any]] = None,
    ) -> "VariableStore":
        """Build a store from declared defaults overlaid by run inputs.

        Raises:
            ChainValidationError: a required variable has neither default nor
                input, or a value does not match its declared type.
        """
        inputs = dict(inputs or {})
        declared = {v.name: v for v in global_variables}
        violations = []
        for var in global_variables:
            if var.name in inputs:
                if not var.accepts(inputs[var.name]):
                    violations.append(
                        f"Input '{var.name}' does not match declared type '{var.type.value}'."
                    )
            elif var.required and var.default_value is None:
                violations.append(f"Required variable '{var.name}' was not provided.")
            elif not var.accepts(var.default_value):
                violations.append(
                    f"Default for '{var.name}' does not match declared type '{var.type.value}'."
                )
        if violations:
            raise ChainValidationError("Invalid run inputs", violations=violations)

        values = {name: copy.deepcopy(var.default_value) for name, var in declared.items()}
        values.update(copy.deepcopy(inputs))
        return cls(values)

    # ── Mapping ───────────────────────────────────────────────────────────────

    def __getitem__(self, name: str) -> Any:
        return self._values[name]

    def __iter__(self) -> Iterator[str]:
        return iter(self._values)

    def __len__(self) -> int:
        return len(self._values)

    def __contains__(self, name: object) -> bool:
        return name in self._values

    def __repr__(self) -> str:
        return f"VariableStore({self._values!r})"

    # ── Mutation ──────────────────────────────────────────────────────────────

    def get(self, name: str, default: Any = None) -> Any:
        return self._values.get(name, default)

    def set(self, name: str, value: Any) -> None:
        self._values[name] = value

    def snapshot(self) -> dict[str, Any]:
        """Deep copy of the current values; later writes do not affect it."""
        return copy.deepcopy(self._values)
