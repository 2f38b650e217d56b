"""Static screening of source code before it is executed.

Checks are regex based. They reject code that does not look like a source
module and code that reaches for dynamic execution or privileged host
access. This is a screening step, not a sandbox.
"""

import logging
import re
from dataclasses import dataclass

from plugins.errors import SecurityError, StructuralError

logger = logging.getLogger(__name__)

# Evidence of a BaseSource subtype
SUBTYPE_PATTERNS = [
    # class X(BaseSource):
    r"^[ \t]*class[ \t]+\w+[ \t]*\((?:[^)]*,)?[ \t]*(?:[\w.]+\.)?BaseSource[ \t]*(?:,[^)]*)?\)[ \t]*:",
    # X = type("X", (BaseSource,), {...})
    r"^[ \t]*\w+[ \t]*=[ \t]*type[ \t]*\([ \t]*['\"]\w+['\"][ \t]*,[ \t]*\([ \t]*(?:[\w.]+\.)?BaseSource\b",
    # exports["default"] = type(..., (BaseSource,), ...)
    r"exports[ \t]*\[[ \t]*['\"]default['\"][ \t]*\][ \t]*=[ \t]*type[ \t]*\([^)]*?\([ \t]*(?:[\w.]+\.)?BaseSource\b",
    # exports = {"default": type(..., (BaseSource,), ...)}
    r"exports[ \t]*=[ \t]*\{[ \t]*['\"]default['\"][ \t]*:[ \t]*type[ \t]*\([^)]*?\([ \t]*(?:[\w.]+\.)?BaseSource\b",
]

# Evidence of a default export
EXPORT_PATTERNS = [
    r"^[ \t]*@(?:[\w.]+\.)?default_export\b",
    r"^[ \t]*__default__[ \t]*=[ \t]*\S",
    r"exports[ \t]*\[[ \t]*['\"]default['\"][ \t]*\][ \t]*=",
    r"exports[ \t]*=[ \t]*\{[ \t]*['\"]default['\"][ \t]*:",
]

PRIVILEGED_MODULES = (
    r"subprocess|multiprocessing|pty|os|shutil|pathlib|socket|ssl|socketserver|"
    r"http\.server|ctypes|marshal|pickle|builtins|io|_io|fcntl|mmap"
)

# (pattern, description)
SECURITY_PATTERNS = [
    # Dynamic code execution
    (r"\beval[ \t]*\(", "eval()"),
    (r"\bexec[ \t]*\(", "exec()"),
    (r"(?<![\w.])compile[ \t]*\(", "compile()"),
    (r"__import__", "__import__"),
    (r"\bimportlib\b", "importlib"),
    (r"\bFunctionType[ \t]*\(", "FunctionType()"),
    (r"\bCodeType[ \t]*\(", "CodeType()"),
    (r"\bmarshal[ \t]*\.[ \t]*loads?\b", "marshal.loads()"),
    (r"\bpickle[ \t]*\.[ \t]*loads?\b", "pickle.loads()"),
    (r"__builtins__", "__builtins__"),
    (r"(?<![\w.])globals[ \t]*\(", "globals()"),
    # Privileged host capabilities
    (
        rf"^[ \t]*import[ \t]+(?:[\w.]+[ \t]*(?:as[ \t]+\w+)?[ \t]*,[ \t]*)*(?:{PRIVILEGED_MODULES})\b",
        "privileged module import",
    ),
    (rf"^[ \t]*from[ \t]+(?:{PRIVILEGED_MODULES})\b", "privileged module import"),
    (r"^[ \t]*from[ \t]+http[ \t]+import[ \t]+[^\n]*\bserver\b", "privileged module import"),
    (r"\bcreate_subprocess_(?:exec|shell)\b", "subprocess creation"),
    (r"(?<![\w.])open[ \t]*\(", "open()"),
    (r"\b_?io[ \t]*\.[ \t]*open\b", "open()"),
    (r"\b(?:open_connection|start_server|open_unix_connection|start_unix_server)\b", "raw socket"),
]

_SUBTYPE_RE = [re.compile(p, re.MULTILINE) for p in SUBTYPE_PATTERNS]
_EXPORT_RE = [re.compile(p, re.MULTILINE) for p in EXPORT_PATTERNS]
_SECURITY_RE = [(re.compile(p, re.MULTILINE), description) for p, description in SECURITY_PATTERNS]


@dataclass
class Violation:
    """A denylisted pattern found in code."""

    description: str
    pattern: str
    line: int
    text: str


class CodeValidator:
    """Structural and security screening for source code.

    Example:
        >>> validator = CodeValidator()
        >>> validator.validate(code, source_id="example")
    """

    def has_base_subtype(self, code: str) -> bool:
        return any(regex.search(code) for regex in _SUBTYPE_RE)

    def has_default_export(self, code: str) -> bool:
        return any(regex.search(code) for regex in _EXPORT_RE)

    def validate_structure(self, code: str, source_id: str | None = None) -> None:
        """Require a BaseSource subtype and a default export.

        Raises:
            StructuralError: If either is missing.
        """
        if not self.has_base_subtype(code):
            raise StructuralError(
                "Invalid source code: must define a class extending BaseSource",
                source_id=source_id,
            )
        if not self.has_default_export(code):
            raise StructuralError(
                "Invalid source code: must mark the source class as the default export",
                source_id=source_id,
            )

    def find_violations(self, code: str) -> list[Violation]:
        """List every denylisted pattern found in code."""
        violations = []
        for regex, description in _SECURITY_RE:
            for match in regex.finditer(code):
                line = code.count("\n", 0, match.start()) + 1
                text = code.splitlines()[line - 1].strip() if code else ""
                violations.append(
                    Violation(description=description, pattern=regex.pattern, line=line, text=text)
                )
        violations.sort(key=lambda v: v.line)
        return violations

    def validate_security(self, code: str, source_id: str | None = None) -> None:
        """Reject code containing any denylisted pattern.

        Raises:
            SecurityError: Naming the first offending pattern.
        """
        for regex, description in _SECURITY_RE:
            match = regex.search(code)
            if match:
                logger.warning("Security check failed for %s: %s", source_id or "code", description)
                raise SecurityError(
                    f"Security violation: {description} detected ({match.group(0).strip()!r})",
                    pattern=description,
                    source_id=source_id,
                )

    def validate(self, code: str, source_id: str | None = None) -> None:
        """Run structure then security checks."""
        self.validate_structure(code, source_id=source_id)
        self.validate_security(code, source_id=source_id)
