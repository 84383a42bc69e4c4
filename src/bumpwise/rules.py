"""Declarative rule tables used by the signal extractor.

Both tables map a category name to a list of regular expressions. They are the
defaults; a configuration file may replace any category wholesale (see
:mod:`bumpwise.config`), so adding a marker or a directory convention never
needs a code change.
"""

import re
from collections.abc import Iterable, Mapping

# Path categories for newly added files. ``ignore`` is checked first, then the
# categories in PATH_CATEGORY_ORDER; the first match wins.
PATH_CATEGORY_ORDER = ("test", "doc", "source")

DEFAULT_PATH_RULES: dict[str, list[str]] = {
    "ignore": [
        r"(^|/)(build|dist|out|third[_-]?party|vendor|\.git|node_modules|target|bin|obj|__pycache__)(/|$)",
        r"\.(lock|exe|dll|so|dylib|a|o|pyc|jar|war|ear|zip|tar|gz|bz2|xz|7z|rar|png|jpe?g|gif|bmp|ico|pdf)$",
    ],
    "test": [
        r"(^|/)(test|tests|unittests|testing|it|e2e|spec)(/|$)",
        r"(^|/)test_[^/]+\.py$",
        r"(_test|\.test|\.spec|_spec)\.[A-Za-z0-9]+$",
        r"(^|/)conftest\.py$",
    ],
    "doc": [
        r"(?i)(^|/)(doc|docs|documentation|man)(/|$)",
        r"(?i)(^|/)(readme|changelog|contributing|license|copying|authors|install|news|history)(\.[A-Za-z0-9]+)?$",
        r"(?i)\.(md|markdown|mkd|rst|adoc)$",
    ],
    "source": [
        r"(^|/)(src|source|app|lib|include|pkg|cmd)(/|$)",
        r"\.(c|cc|cpp|cxx|h|hh|hpp|inl|go|rs|java|cs|m|mm|swift|kt|ts|tsx|js|jsx|sh|py|rb|php|pl|lua|sql|cmake)$",
        r"(^|/)(CMakeLists\.txt|Makefile|makefile|GNUmakefile|meson\.build)$",
    ],
}

# Marker categories scanned over commit messages and added diff lines.
DEFAULT_MARKERS: dict[str, list[str]] = {
    "breaking": [
        r"\bBREAKING[ _-]CHANGES?\b",
        r"\b(API|CLI)[ _-]?BREAKING\b",
        r"(?m)^[a-z]+(\([^)\n]*\))?!:",
    ],
    "security": [
        r"(?i)\bsecurity\b",
        r"(?i)\bvulnerab(le|ility|ilities)\b",
        r"(?i)\bCVE-\d{4}-\d{4,7}\b",
        r"(?i)\bexploit(s|able|ed)?\b",
        r"(?i)\b(xss|csrf|ssrf|xxe|rce)\b",
        r"(?i)\b(sql|command|code)[ -]injection\b",
        r"(?i)\b(buffer|heap|stack|integer)[ _-]overflow\b",
        r"(?i)\b(use[ _-]after[ _-]free|double[ _-]free)\b",
        r"(?i)\bprivilege[ _-]escalation\b",
        r"(?i)\b(path|directory)[ _-]traversal\b",
    ],
}

# Files scanned for command-line option declarations.
DEFAULT_OPTION_FILES: list[str] = [
    "*.c",
    "*.cc",
    "*.cpp",
    "*.cxx",
    "*.h",
    "*.hh",
    "*.hpp",
    "*.py",
    "*.go",
    "*.rs",
    "*.sh",
]

HEADER_RE = re.compile(r"\.(h|hh|hpp|hxx)$")


def compile_rules(rules: Mapping[str, Iterable[str]]) -> dict[str, tuple[re.Pattern, ...]]:
    """Compile a ``category -> [regex]`` table.

    Raises:
        re.error: If any pattern is invalid
    """
    return {category: tuple(re.compile(p) for p in patterns) for category, patterns in rules.items()}


def classify_path(path: str, rules: Mapping[str, tuple[re.Pattern, ...]]) -> str | None:
    """Return the category for a newly added file, or None if it is uninteresting."""
    if any(p.search(path) for p in rules.get("ignore", ())):
        return None
    for category in PATH_CATEGORY_ORDER:
        if any(p.search(path) for p in rules.get(category, ())):
            return category
    return None


def count_markers(text: str, patterns: Iterable[re.Pattern]) -> int:
    """Count non-overlapping matches of every pattern in ``text``."""
    return sum(len(p.findall(text)) for p in patterns)
