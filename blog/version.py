"""Application name and version, read from the installed distribution."""

from importlib.metadata import PackageNotFoundError, version

__app_name__ = "markdown-blog"

try:
    __version__ = version(__app_name__)
except PackageNotFoundError:
    # running from a source checkout that was never installed
    __version__ = "0.0.0"
