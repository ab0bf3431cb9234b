"""Peer wire protocol.

This module handles the handshake, message framing and the connection to a
single peer.
"""

from __future__ import annotations

from minibt.peer.connection import PeerConnection
from minibt.peer.handshake import Handshake
from minibt.peer.messages import PeerMessage

__all__ = ["Handshake", "PeerConnection", "PeerMessage"]
