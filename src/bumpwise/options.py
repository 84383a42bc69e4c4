"""Lightweight structural scan for command-line option declarations.

Two conventions are recognised and reported separately:

* structured: option tables the parser library owns - getopt optstrings,
  C ``struct option`` arrays, argparse ``add_argument``, click ``option``
  decorators and clap ``short``/``long`` builders;
* manual: option literals compared by hand (``strcmp(arg, "--foo")``,
  ``arg == "--foo"``, ``"--foo" in sys.argv``, shell ``case`` arms).

Options are normalized before comparison so that adding or dropping an
argument indicator (``b`` -> ``b:``, ``--out`` -> ``--out=FILE``) is not seen
as a removal plus an addition.
"""

import re
from collections.abc import Iterable
from dataclasses import dataclass, field

OPTION_LITERAL_RE = re.compile(r"""["'](-{1,2}[A-Za-z0-9][A-Za-z0-9_/-]*(?:[=:][^"'\s]*)?)["']""")
GETOPT_RE = re.compile(r"""\bgetopt(?:_long(?:_only)?)?\s*\([^,]+,[^,]+,\s*"([^"]*)\"""")
STRUCT_OPTION_RE = re.compile(r"struct\s+option\b[^{;]*=\s*\{(.*?)\}\s*;", re.DOTALL)
STRUCT_ENTRY_RE = re.compile(r"""\{\s*"([^"]+)"|\.name\s*=\s*"([^"]+)\"""")
DECLARATION_RE = re.compile(r"(?:\badd_argument|\badd_option|\bclick\.option|@option)\s*\(([^)]*)\)", re.DOTALL)
CLAP_LONG_RE = re.compile(r"""\.long\(\s*"([A-Za-z0-9][A-Za-z0-9_-]*)"\s*\)""")
CLAP_SHORT_RE = re.compile(r"""\.short\(\s*'([A-Za-z0-9])'\s*\)""")
MANUAL_HINT_RE = re.compile(r"\bstrn?cmp\b|==|!=|\bcase\b|\bin\b|startswith|\bargv\b|\bmatch\b")
SHELL_CASE_RE = re.compile(r"^\s*(-{1,2}[A-Za-z][\w-]*(?:\s*\|\s*-{1,2}[A-Za-z][\w-]*)*)\s*\)")
COMMENT_RE = re.compile(r"^\s*(//|/\*|\*|#(?!include|define|if|else|endif))")
STRUCTURED_LINE_RE = re.compile(r"\bgetopt|\badd_argument|\badd_option|\bclick\.option|@option|\.long\(|\.short\(")
ARG_INDICATOR_RE = re.compile(r"[=:<\[].*$")


def normalize_option(token: str) -> str:
    """Strip whitespace and any trailing argument indicator from an option."""
    return ARG_INDICATOR_RE.sub("", token.strip())


def is_long(option: str) -> bool:
    return option.startswith("--")


@dataclass(frozen=True)
class OptionSet:
    structured: frozenset[str] = frozenset()
    manual: frozenset[str] = frozenset()

    @property
    def all(self) -> frozenset[str]:
        return self.structured | self.manual

    def __or__(self, other: "OptionSet") -> "OptionSet":
        return OptionSet(self.structured | other.structured, self.manual | other.manual)


@dataclass(frozen=True)
class OptionSource:
    """Full text of one option-declaring file at the base and target refs."""

    path: str
    before: str = ""
    after: str = ""


@dataclass(frozen=True)
class OptionDelta:
    before: OptionSet = field(default_factory=OptionSet)
    after: OptionSet = field(default_factory=OptionSet)

    @property
    def added(self) -> frozenset[str]:
        return self.after.all - self.before.all

    @property
    def removed(self) -> frozenset[str]:
        return self.before.all - self.after.all

    @property
    def cli_changed(self) -> bool:
        return self.before.structured != self.after.structured

    @property
    def manual_cli_changed(self) -> bool:
        return self.before.manual != self.after.manual

    @property
    def breaking(self) -> bool:
        return bool(self.removed)

    def counts(self) -> dict[str, int]:
        return {
            "added_short_options": sum(1 for o in self.added if not is_long(o)),
            "added_long_options": sum(1 for o in self.added if is_long(o)),
            "removed_short_options": sum(1 for o in self.removed if not is_long(o)),
            "removed_long_options": sum(1 for o in self.removed if is_long(o)),
        }


def _optstring_options(optstring: str) -> set[str]:
    # Leading '+'/'-'/':' select GNU getopt modes; ':' after a letter marks an argument.
    return {f"-{ch}" for ch in optstring if ch.isalnum()}


def _literal_options(text: str) -> set[str]:
    found = set()
    for literal in OPTION_LITERAL_RE.findall(text):
        for part in literal.split("/"):
            if part.startswith("-"):
                found.add(normalize_option(part))
    return found


def scan_structured(text: str) -> set[str]:
    options: set[str] = set()
    for optstring in GETOPT_RE.findall(text):
        options |= _optstring_options(optstring)
    for block in STRUCT_OPTION_RE.findall(text):
        for positional, designated in STRUCT_ENTRY_RE.findall(block):
            name = positional or designated
            if name:
                options.add("--" + normalize_option(name))
    for args in DECLARATION_RE.findall(text):
        options |= _literal_options(args)
    options.update("--" + name for name in CLAP_LONG_RE.findall(text))
    options.update("-" + name for name in CLAP_SHORT_RE.findall(text))
    return {o for o in options if o.strip("-")}


def scan_manual(text: str) -> set[str]:
    options: set[str] = set()
    for line in text.splitlines():
        if COMMENT_RE.match(line) or STRUCTURED_LINE_RE.search(line):
            continue
        case_arm = SHELL_CASE_RE.match(line)
        if case_arm:
            options.update(normalize_option(o) for o in case_arm.group(1).split("|"))
            continue
        if MANUAL_HINT_RE.search(line):
            options |= _literal_options(line)
    return {o for o in options if o.strip("-")}


def scan_options(text: str) -> OptionSet:
    """Structured and hand-written options declared in one file."""
    return OptionSet(frozenset(scan_structured(text)), frozenset(scan_manual(text)))


def compare_sources(sources: Iterable[OptionSource]) -> OptionDelta:
    """Union the option sets of every source on each side of the diff.

    Aggregating by set union keeps the result independent of file order and
    lets an option move between files without being reported as removed.
    """
    before = OptionSet()
    after = OptionSet()
    for source in sources:
        before = before | scan_options(source.before)
        after = after | scan_options(source.after)
    return OptionDelta(before=before, after=after)
