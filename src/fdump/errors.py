"""Failure taxonomy for a transfer session.

A rejected handshake is not an error: it is reported as an outcome.
"""


class TransferError(Exception):
    """Base class for failures that end a transfer session."""


class TransportFailure(TransferError):
    """Socket error, timeout, or the remote closed the connection early."""


class ProtocolFailure(TransferError):
    """The remote reported the end of the transfer as failed."""


class LocalIOFailure(TransferError):
    """Reading the source file or deleting it afterwards failed."""
