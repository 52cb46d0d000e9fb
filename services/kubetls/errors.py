"""Root of the kubetls exception hierarchy."""


class KubeTLSError(Exception):
    """Base class for all errors raised by kubetls."""
