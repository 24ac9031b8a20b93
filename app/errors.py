"""Exceptions raised while talking to the metadata service."""

from __future__ import annotations


class CatalogError(Exception):
    """Base class for catalog failures surfaced to the session."""


class TransportError(CatalogError):
    """The upstream request failed or returned a non-success status."""

    def __init__(self, message: str, *, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class NotFoundError(TransportError):
    """A single-entity lookup returned 404."""


class CredentialsError(TransportError):
    """The API key is missing or was rejected upstream."""


class EmptyInputError(CatalogError, ValueError):
    """A search or suggestion was requested with blank input."""
