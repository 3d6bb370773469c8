"""trustify-cli: find and remove duplicate SBOMs on a Trustify server."""

__version__ = "0.1.0"

__all__ = ["__version__"]
