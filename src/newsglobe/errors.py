"""Exceptions shared across NewsGlobe components."""


class MissingCredentialsError(ValueError):
    """A required API credential is not configured."""
