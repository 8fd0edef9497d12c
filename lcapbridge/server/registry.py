"""Allow-list and name-to-callable table for the privileged context."""

from __future__ import annotations

import inspect
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from typing import Any, Callable, TypeVar

from loguru import logger

from lcapbridge.errors import NotAFunctionError

F = TypeVar("F", bound=Callable[..., Any])


@dataclass(frozen=True, slots=True)
class AllowList:
    """Immutable set of root or dotted names the listener will execute."""

    roots: tuple[str, ...]

    @classmethod
    def of(cls, roots: Iterable[str]) -> "AllowList":
        cleaned = tuple(dict.fromkeys(r.strip() for r in roots if r and r.strip()))
        if not cleaned:
            raise ValueError("allow-list needs at least one root")
        return cls(roots=cleaned)

    def allows(self, name: str) -> bool:
        """Exact root, or root followed by a literal "." (``_RB`` admits ``_RB.x``, not ``_RBX``)."""
        return any(name == root or name.startswith(root + ".") for root in self.roots)


class FunctionTable:
    """Explicit name to callable table, filled once at startup.

    Names are looked up verbatim; nothing is discovered at call time. Bound
    methods registered through ``expose_namespace`` keep their receiver.
    Values that are not callable may be registered too (they resolve to
    "not a function").
    """

    def __init__(self) -> None:
        self._entries: dict[str, Any] = {}
        self._frozen = False

    def __contains__(self, name: object) -> bool:
        return name in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def names(self) -> list[str]:
        return sorted(self._entries)

    @property
    def frozen(self) -> bool:
        return self._frozen

    def freeze(self) -> None:
        self._frozen = True

    def expose(self, name: str, target: Any) -> None:
        if self._frozen:
            raise RuntimeError(f"function table is frozen; cannot expose {name}")
        if not name or name != name.strip() or name.startswith(".") or name.endswith("."):
            raise ValueError(f"invalid exposed name: {name!r}")
        self._entries[name] = target

    def function(self, name: str) -> Callable[[F], F]:
        """Decorator form of :meth:`expose`."""

        def decorator(fn: F) -> F:
            self.expose(name, fn)
            return fn

        return decorator

    def expose_namespace(self, root: str, namespace: Any) -> list[str]:
        """Expose the members of ``namespace`` as ``root.<member>``.

        Mappings are walked recursively; for other objects every public
        attribute is exposed (bound, for methods). Returns the names added.
        """
        added: list[str] = []
        if isinstance(namespace, Mapping):
            items = list(namespace.items())
        else:
            items = [(attr, getattr(namespace, attr)) for attr in dir(namespace) if not attr.startswith("_")]
        for key, value in items:
            name = f"{root}.{key}"
            if isinstance(value, Mapping):
                added.extend(self.expose_namespace(name, value))
                continue
            self.expose(name, value)
            added.append(name)
        logger.debug("exposed {} names under {}", len(added), root)
        return added

    def resolve(self, name: str) -> Callable[..., Any]:
        target = self._entries.get(name)
        if target is None or not callable(target):
            raise NotAFunctionError(name)
        return target

    async def call(self, name: str, *args: Any) -> Any:
        """Resolve ``name`` and invoke it in-process, awaiting awaitable results."""
        outcome = self.resolve(name)(*args)
        if inspect.isawaitable(outcome):
            outcome = await outcome
        return outcome
