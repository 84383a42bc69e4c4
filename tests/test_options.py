"""Tests for command-line option scanning."""

from bumpwise.options import (
    OptionSource,
    compare_sources,
    normalize_option,
    scan_manual,
    scan_options,
    scan_structured,
)

C_SOURCE = """
#include <getopt.h>

static struct option long_options[] = {
    {"verbose", no_argument, 0, 'v'},
    {"output", required_argument, 0, 'o'},
    {0, 0, 0, 0}
};

int main(int argc, char **argv) {
    int c;
    while ((c = getopt_long(argc, argv, "vo:", long_options, NULL)) != -1) {
    }
    for (int i = 1; i < argc; i++) {
        if (strcmp(argv[i], "--legacy") == 0) {
            legacy = 1;
        }
    }
    return 0;
}
"""


def test_getopt_optstring() -> None:
    """Test that argument indicators in an optstring are dropped."""
    assert scan_structured('getopt(argc, argv, "ab:c::")') == {"-a", "-b", "-c"}


def test_c_source_structured_and_manual() -> None:
    options = scan_options(C_SOURCE)
    assert options.structured == {"-v", "-o", "--verbose", "--output"}
    assert options.manual == {"--legacy"}


def test_designated_struct_entries() -> None:
    text = 'struct option opts[] = {\n    { .name = "color", .has_arg = 1 },\n    { 0 }\n};\n'
    assert scan_structured(text) == {"--color"}


def test_argparse_declaration() -> None:
    text = 'parser.add_argument("-o", "--output", metavar="FILE", help="where to write")\n'
    assert scan_structured(text) == {"-o", "--output"}
    assert scan_manual(text) == set()


def test_click_flag_pair() -> None:
    text = '@click.option("--dry-run/--no-dry-run", default=False)\n'
    assert scan_structured(text) == {"--dry-run", "--no-dry-run"}


def test_manual_python_checks() -> None:
    text = 'if "--fast" in sys.argv:\n    pass\nif arg.startswith("--level="):\n    pass\n'
    assert scan_manual(text) == {"--fast", "--level"}


def test_shell_case_arms() -> None:
    text = 'case "$1" in\n  -q|--quiet) QUIET=1 ;;\n  --help) usage ;;\nesac\n'
    assert scan_manual(text) == {"-q", "--quiet", "--help"}


def test_comments_are_ignored() -> None:
    text = '// if (strcmp(arg, "--old") == 0)\n# "--older" in sys.argv\n'
    assert scan_manual(text) == set()


def test_normalize_option() -> None:
    assert normalize_option(" --out=FILE ") == "--out"
    assert normalize_option("--size<n>") == "--size"
    assert normalize_option("-b:") == "-b"


def test_argument_indicator_change_is_not_a_change() -> None:
    source = OptionSource("main.c", 'getopt(argc, argv, "ab")', 'getopt(argc, argv, "ab:")')
    delta = compare_sources([source])
    assert not delta.added
    assert not delta.removed
    assert not delta.cli_changed


def test_removed_option_is_breaking() -> None:
    source = OptionSource(
        "cli.py",
        'parser.add_argument("--old")\nparser.add_argument("-v")\n',
        'parser.add_argument("-v")\nparser.add_argument("--new")\nparser.add_argument("-n")\n',
    )
    delta = compare_sources([source])
    assert delta.removed == {"--old"}
    assert delta.added == {"--new", "-n"}
    assert delta.cli_changed
    assert not delta.manual_cli_changed
    assert delta.breaking
    assert delta.counts() == {
        "added_short_options": 1,
        "added_long_options": 1,
        "removed_short_options": 0,
        "removed_long_options": 1,
    }


def test_option_moved_between_files() -> None:
    """Test that options are compared over the union of all files."""
    sources = [
        OptionSource("a.py", before='parser.add_argument("--x")\n', after=""),
        OptionSource("b.py", before="", after='parser.add_argument("--x")\n'),
    ]
    delta = compare_sources(sources)
    assert not delta.removed
    assert not delta.added
    assert not delta.breaking


def test_manual_change_only() -> None:
    source = OptionSource("run.sh", 'case "$1" in\n  --a) ;;\nesac\n', 'case "$1" in\n  --a) ;;\n  --b) ;;\nesac\n')
    delta = compare_sources([source])
    assert delta.manual_cli_changed
    assert not delta.cli_changed
    assert delta.added == {"--b"}
