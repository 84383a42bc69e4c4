"""bumpwise - score repository changes and compute the next release version."""

__version__ = "0.1.0"

DEFAULT_CONFIG_FILE = ".bumpwise.yml"
DEFAULT_VERSION_FILE = "VERSION"
