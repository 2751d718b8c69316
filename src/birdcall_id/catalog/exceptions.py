"""Custom exceptions for the species catalog."""


class CatalogError(Exception):
    """Base exception for catalog errors."""

    pass


class CatalogNotLoadedError(CatalogError):
    """Exception raised when a lookup is made before the catalog is loaded."""

    pass


class CatalogUnavailableError(CatalogError):
    """Exception raised when the backing store cannot be read."""

    pass
