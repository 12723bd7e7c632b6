"""storeauth: authentication and authorization for the catalog backend."""

__version__ = "0.1.0"
