"""Exceptions raised by txpager."""


class TxPagerError(Exception):
    """Base class for every error raised by this package."""


class NotInitialized(TxPagerError):
    """A node operation was invoked before a connection was established."""


class NoBackingConnection(NotInitialized):
    """The scanner was asked for a page without a connected node."""


class TransportError(TxPagerError):
    """A round trip to the node failed (network, timeout or node-side error)."""


class DecodeError(TxPagerError):
    """A contract call result could not be decoded as the requested type."""


class UnknownTransport(TxPagerError, ValueError):
    """The endpoint URL does not use a supported scheme."""


class ScanCancelled(TxPagerError):
    """The scan was stopped between chunks by its caller or its deadline."""
