"""Code materialization strategies.

Each strategy turns verified source text into the source class it exports.
Strategies are synchronous; the loader runs them in a worker thread with a
timeout. A strategy raises on failure and the loader moves to the next one.
"""

from __future__ import annotations

import __future__
import asyncio
import builtins
import hashlib
import importlib.abc
import importlib.util
import logging
import re
import sys
import tempfile
from pathlib import Path
from typing import Any

from plugins.base import BaseSource, is_default_export
from plugins.errors import LoadError
from plugins.http import fetch

logger = logging.getLogger(__name__)


def extract_constructor(namespace: dict[str, Any], module_name: str | None = None) -> type[BaseSource]:
    """Find the default-exported source class in an executed namespace.

    Lookup order: `__default__`, `exports["default"]`, then a class marked
    with @default_export (classes defined in the module itself first).

    Raises:
        LoadError: If nothing is exported or the export is not a BaseSource subclass
    """
    candidate = namespace.get("__default__")

    if candidate is None:
        exports = namespace.get("exports")
        if isinstance(exports, dict):
            candidate = exports.get("default")

    if candidate is None:
        marked = [value for value in namespace.values() if is_default_export(value)]
        local = [cls for cls in marked if module_name and cls.__module__ == module_name]
        if local or marked:
            candidate = (local or marked)[0]

    if candidate is None:
        raise LoadError("No default export found in source module")

    if not isinstance(candidate, type) or not issubclass(candidate, BaseSource):
        raise LoadError(f"Default export {candidate!r} is not a BaseSource subclass")

    return candidate


class MaterializationStrategy:
    """Interface for turning source text into a source class."""

    name = "base"

    def materialize(self, code: str, module_name: str) -> type[BaseSource]:
        raise NotImplementedError


class SyntheticModuleStrategy(MaterializationStrategy):
    """Import the code from a throwaway module file.

    The file only exists while it is compiled. The temporary directory is
    gone before any of the module's code runs, and the module name is
    dropped from sys.modules afterwards.
    """

    name = "synthetic-module"

    def materialize(self, code: str, module_name: str) -> type[BaseSource]:
        with tempfile.TemporaryDirectory(prefix="remote-source-") as tmpdir:
            module_path = Path(tmpdir) / f"{module_name}.py"
            module_path.write_text(code, encoding="utf-8")

            spec = importlib.util.spec_from_file_location(module_name, module_path)
            if spec is None or spec.loader is None:
                raise ImportError(f"Cannot create module spec for {module_path}")

            compiled = spec.loader.get_code(module_name)
            module = importlib.util.module_from_spec(spec)

        sys.modules[module_name] = module
        try:
            exec(compiled, vars(module))
        finally:
            sys.modules.pop(module_name, None)

        return extract_constructor(vars(module), module_name)


class InlineSourceLoader(importlib.abc.InspectLoader):
    """Loader whose module source is carried in memory."""

    def __init__(self, source: str, origin: str):
        self._source = source
        self._origin = origin

    def get_source(self, fullname: str) -> str:
        return self._source

    def get_code(self, fullname: str):
        return self.source_to_code(self._source, self._origin)

    def is_package(self, fullname: str) -> bool:
        return False


class InlineModuleStrategy(MaterializationStrategy):
    """Import the code through an in-memory loader, no file involved."""

    name = "inline-module"

    def materialize(self, code: str, module_name: str) -> type[BaseSource]:
        digest = hashlib.sha256(code.encode("utf-8")).hexdigest()
        origin = f"inline:sha256:{digest}"

        loader = InlineSourceLoader(code, origin)
        spec = importlib.util.spec_from_loader(module_name, loader, origin=origin)
        if spec is None:
            raise ImportError(f"Cannot create module spec for {origin}")

        module = importlib.util.module_from_spec(spec)
        sys.modules[module_name] = module
        try:
            loader.exec_module(module)
        finally:
            sys.modules.pop(module_name, None)

        return extract_constructor(vars(module), module_name)


SAFE_BUILTINS = (
    "abs", "aiter", "all", "anext", "any", "ascii", "bin", "bool", "bytearray",
    "bytes", "callable", "chr", "classmethod", "complex", "dict", "divmod",
    "enumerate", "filter", "float", "format", "frozenset", "hash", "hex", "int",
    "isinstance", "issubclass", "iter", "len", "list", "map", "max", "min",
    "next", "object", "oct", "ord", "pow", "print", "property", "range", "repr",
    "reversed", "round", "set", "slice", "sorted", "staticmethod", "str", "sum",
    "super", "tuple", "type", "zip", "__build_class__",
    "None", "True", "False", "NotImplemented", "Ellipsis",
    "ArithmeticError", "AssertionError", "AttributeError", "BaseException",
    "Exception", "IndexError", "KeyError", "LookupError", "NotImplementedError",
    "RuntimeError", "StopAsyncIteration", "StopIteration", "TypeError",
    "ValueError", "ZeroDivisionError",
)

_DECORATED_EXPORT = re.compile(
    r"^([ \t]*)@(?:[\w.]+\.)?default_export[ \t]*\n((?:[ \t]*@[^\n]*\n)*)([ \t]*class[ \t]+([A-Za-z_]\w*))",
    re.MULTILINE,
)
_FUTURE_IMPORT = re.compile(
    r"^[ \t]*from[ \t]+__future__[ \t]+import[ \t]+(?:\(([^)]*)\)|([^\n]*))[ \t]*$",
    re.MULTILINE,
)
_DEFAULT_ASSIGNMENT = re.compile(r"^([ \t]*)__default__[ \t]*=", re.MULTILINE)
_PLUGIN_FROM_IMPORT = re.compile(
    r"^[ \t]*from[ \t]+plugins(?:\.\w+)*[ \t]+import[ \t]+(?:\([^)]*\)|[^\n]*)[ \t]*$",
    re.MULTILINE,
)
_PLUGIN_IMPORT = re.compile(r"^[ \t]*import[ \t]+plugins(?:\.\w+)*(?:[ \t]+as[ \t]+\w+)?[ \t]*$", re.MULTILINE)


def transform_exports(code: str) -> str:
    """Rewrite export syntax into `exports["default"] = X` assignments.

    Imports of the plugins package are removed; their names are injected
    into the sandbox namespace instead.
    """
    exported: list[str] = []

    def _undecorate(match: re.Match) -> str:
        exported.append(match.group(4))
        return f"{match.group(2)}{match.group(3)}"

    transformed = _DECORATED_EXPORT.sub(_undecorate, code)
    transformed = _DEFAULT_ASSIGNMENT.sub(r'\1exports["default"] =', transformed)
    transformed = _PLUGIN_FROM_IMPORT.sub("", transformed)
    transformed = _PLUGIN_IMPORT.sub("", transformed)
    transformed = _FUTURE_IMPORT.sub("", transformed)

    if exported:
        transformed = transformed.rstrip("\n") + "\n\n" + f'exports["default"] = {exported[0]}\n'
    return transformed


def future_flags(code: str) -> int:
    """Compiler flags for the `from __future__ import ...` lines in code.

    Raises:
        SyntaxError: For an unknown future feature
    """
    flags = 0
    for match in _FUTURE_IMPORT.finditer(code):
        names = match.group(1) if match.group(1) is not None else match.group(2)
        for name in names.split(","):
            name = name.split("#", 1)[0].split(" as ", 1)[0].strip()
            if not name:
                continue
            if name not in __future__.all_feature_names:
                raise SyntaxError(f"future feature {name} is not defined")
            flags |= getattr(__future__, name).compiler_flag
    return flags


class SandboxedStrategy(MaterializationStrategy):
    """Execute the code in an isolated namespace with restricted builtins.

    The namespace exposes only BaseSource, fetch, sleep, gather, Future and
    the exports dict. There is no __import__, so import statements other
    than the stripped plugins imports fail.
    """

    name = "sandboxed"

    def build_namespace(self, module_name: str) -> dict[str, Any]:
        safe_builtins = {name: getattr(builtins, name) for name in SAFE_BUILTINS if hasattr(builtins, name)}
        return {
            "__builtins__": safe_builtins,
            "__name__": module_name,
            "BaseSource": BaseSource,
            "fetch": fetch,
            "sleep": asyncio.sleep,
            "gather": asyncio.gather,
            "Future": asyncio.Future,
            "exports": {},
        }

    def materialize(self, code: str, module_name: str) -> type[BaseSource]:
        flags = future_flags(code)
        transformed = transform_exports(code)
        namespace = self.build_namespace(module_name)

        compiled = compile(transformed, f"<sandboxed:{module_name}>", "exec", flags=flags, dont_inherit=True)
        exec(compiled, namespace)

        exports = namespace.get("exports")
        if not isinstance(exports, dict) or exports.get("default") is None:
            raise LoadError("Sandboxed code produced no default export")

        return extract_constructor({"exports": exports}, module_name)


STRATEGIES: dict[str, type[MaterializationStrategy]] = {
    SyntheticModuleStrategy.name: SyntheticModuleStrategy,
    InlineModuleStrategy.name: InlineModuleStrategy,
    SandboxedStrategy.name: SandboxedStrategy,
}


def build_strategies(names: tuple[str, ...] | list[str]) -> list[MaterializationStrategy]:
    """Instantiate strategies by name, preserving order."""
    return [STRATEGIES[name]() for name in names]
