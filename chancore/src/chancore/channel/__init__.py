"""
Channel scripts, sign descriptors, signing and commitment transactions.
"""

from chancore.channel.signdesc import SignDescriptor, SignMethod
from chancore.channel.signer import Signer

__all__ = ["SignDescriptor", "SignMethod", "Signer"]
