"""Queued file-dump client.

Pushes local files to a remote ingestion service over TCP:
- a producer thread reads the file into a small ring of reusable buffers
- the session fragments each chunk into length-prefixed frames
- an optional rate cap paces the transmit loop

Nothing here speaks the server side of the protocol.
"""

__all__ = []
