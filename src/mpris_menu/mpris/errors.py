"""Exceptions raised by the MPRIS engine."""


class MprisError(Exception):
    """Base class for all MPRIS engine errors."""


class BusError(MprisError):
    """A call, subscription or property read on the message bus failed."""


class MetadataDecodeError(MprisError):
    """The metadata attribute bag is not a key/value structure."""


class UnsupportedOperationError(MprisError):
    """The player does not advertise the capability needed for an operation."""


class OperationNotImplementedError(MprisError, NotImplementedError):
    """The operation is deliberately not implemented."""


class InvalidDestinationError(MprisError, ValueError):
    """The bus name does not follow the MPRIS naming convention."""


class PlayerNotFoundError(MprisError, KeyError):
    """No live player is registered under the given bus name."""
