"""Storage provisioning engine for EFI operating-system installs."""

from .__version__ import __version__

__all__ = ["__version__"]
