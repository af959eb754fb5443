"""
chanrescue - Recover funds locked in Lightning channels

Force close from channel state or static channel backups, sweep time locked
outputs and run the zombie channel recovery handshake with a peer.
"""

__version__ = "0.1.0"
