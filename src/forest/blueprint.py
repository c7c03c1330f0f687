"""
Static field-permission table for tree-writing functions.

The table is derived from source with ``ast``: for every module-level
function it records the string keys of dict literals, the string keys of
subscript assignments, and the fields of any known dataclass it
constructs. Explicit registrations override what was extracted.
"""

import ast
import dataclasses
import inspect
from dataclasses import dataclass
from types import ModuleType
from typing import Any

from .logger import logger

ALWAYS_WRITABLE = frozenset({"id", "prerequisites"})


@dataclass(frozen=True)
class FunctionMeta:
    name: str
    # None means the function is known but unrestricted
    writes: frozenset[str] | None = None


def _constructor_fields(constructors: dict[str, type]) -> dict[str, frozenset[str]]:
    return {
        name: frozenset(f.name for f in dataclasses.fields(cls))
        for name, cls in constructors.items()
        if dataclasses.is_dataclass(cls)
    }


def _subscript_key(node: ast.AST) -> str | None:
    if isinstance(node, ast.Subscript):
        key = node.slice
        if isinstance(key, ast.Constant) and isinstance(key.value, str):
            return key.value
    return None


def _writes_in(function: ast.AST, constructors: dict[str, frozenset[str]]) -> set[str]:
    writes: set[str] = set()
    for node in ast.walk(function):
        if isinstance(node, ast.Dict):
            writes.update(
                k.value for k in node.keys if isinstance(k, ast.Constant) and isinstance(k.value, str)
            )
        elif isinstance(node, ast.Assign):
            for target in node.targets:
                key = _subscript_key(target)
                if key:
                    writes.add(key)
        elif isinstance(node, (ast.AugAssign, ast.AnnAssign)):
            key = _subscript_key(node.target)
            if key:
                writes.add(key)
        elif isinstance(node, ast.Call) and isinstance(node.func, ast.Name):
            writes.update(constructors.get(node.func.id, ()))
    return writes


def extract_writes(source: str, constructors: dict[str, type] | None = None) -> dict[str, set[str]]:
    """Map each module-level function name in ``source`` to the fields it writes."""
    known = _constructor_fields(constructors or {})
    tree = ast.parse(source)
    return {
        node.name: _writes_in(node, known)
        for node in tree.body
        if isinstance(node, (ast.FunctionDef, ast.AsyncFunctionDef))
    }


class Blueprint:
    def __init__(self, entries: dict[str, FunctionMeta] | None = None):
        self._entries: dict[str, FunctionMeta] = dict(entries or {})

    @classmethod
    def from_source(cls, source: str, constructors: dict[str, type] | None = None) -> "Blueprint":
        return cls(
            {
                name: FunctionMeta(name, frozenset(writes))
                for name, writes in extract_writes(source, constructors).items()
            }
        )

    @classmethod
    def from_modules(
        cls, *modules: ModuleType, constructors: dict[str, type] | None = None
    ) -> "Blueprint":
        blueprint = cls()
        for module in modules:
            extracted = cls.from_source(inspect.getsource(module), constructors)
            blueprint._entries.update(extracted._entries)
            logger.debug(
                f"[GUARD] Blueprint for {module.__name__}: {len(extracted._entries)} functions"
            )
        return blueprint

    def register(self, name: str, writes: Any = None):
        """Declare a function's writable fields; ``writes=None`` leaves it unrestricted."""
        self._entries[name] = FunctionMeta(name, None if writes is None else frozenset(writes))

    def meta(self, name: str) -> FunctionMeta | None:
        return self._entries.get(name)

    def writable_fields(self, name: str) -> frozenset[str] | None:
        meta = self.meta(name)
        if meta is None or meta.writes is None:
            return None
        return meta.writes | ALWAYS_WRITABLE

    def __contains__(self, name: str) -> bool:
        return name in self._entries

    def to_dict(self) -> dict[str, list[str] | None]:
        return {
            name: None if meta.writes is None else sorted(meta.writes)
            for name, meta in sorted(self._entries.items())
        }
