"""gitops - Safe git command construction and policy engine for agents."""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("gitops-guard")
except PackageNotFoundError:
    # Running from source without install
    __version__ = "0.0.0+dev"
