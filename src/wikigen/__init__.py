"""wikigen - generate and keep current an LLM-written wiki for a source repository."""

from importlib.metadata import version, PackageNotFoundError

try:
    __version__ = version("wikigen")
except PackageNotFoundError:
    __version__ = "unknown"

__all__ = ["__version__"]
