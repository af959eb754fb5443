"""
Key ring: locator based key derivation over one of two derivation schemes.

A KeyRing binds a KeyDeriver (lnd style BIP32 or Core Lightning style HKDF)
to a network. The scheme is picked by the caller when constructing the
deriver and never guessed from key material.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Callable

from coincurve import PrivateKey
from loguru import logger

from chancore.constants import DEFAULT_KEY_SCAN_LIMIT
from chancore.errors import CannotDeriveKeyError, DerivationError
from chancore.keychain import hkdf
from chancore.keychain.bip32 import DerivationMode, ExtendedKey, derive_children
from chancore.keychain.path import lnd_family_path
from chancore.keychain.shachain import RevocationProducer
from chancore.models import KeyDescriptor, KeyFamily, KeyLocator
from chancore.params import ChainParams

KeyScanner = Callable[[int], PrivateKey]


class KeyDeriver(ABC):
    """Turns key locators into private keys."""

    @abstractmethod
    def private_key(self, locator: KeyLocator, peer: bytes | None = None) -> PrivateKey:
        """Private key at locator; peer is the counterparty node key where the scheme needs it"""

    @abstractmethod
    def node_key(self) -> PrivateKey:
        """Private key of the node identity"""

    @abstractmethod
    def family_scanner(self, family: KeyFamily, peer: bytes | None = None) -> KeyScanner:
        """Callable deriving the key of each index of a family, for bounded scans"""


class Bip32Deriver(KeyDeriver):
    """lnd keys under m/1017'/coin'/family'/0/index."""

    def __init__(
        self,
        root: ExtendedKey,
        params: ChainParams,
        mode: DerivationMode = DerivationMode.LND,
    ):
        if not root.is_private:
            raise DerivationError("root key must be a private extended key")
        self.root = root
        self.params = params
        self.mode = mode

    def _family_branch(self, family: KeyFamily) -> ExtendedKey:
        return derive_children(self.root, lnd_family_path(self.params, family), self.mode)

    def _child(self, branch: ExtendedKey, index: int) -> PrivateKey:
        if self.mode == DerivationMode.BIP32:
            return branch.derive(index).private_key()
        return branch.derive_non_standard(index).private_key()

    def private_key(self, locator: KeyLocator, peer: bytes | None = None) -> PrivateKey:
        return self._child(self._family_branch(locator.family), locator.index)

    def node_key(self) -> PrivateKey:
        return self.private_key(KeyLocator(family=KeyFamily.NODE_KEY, index=0))

    def family_scanner(self, family: KeyFamily, peer: bytes | None = None) -> KeyScanner:
        branch = self._family_branch(family)
        return lambda index: self._child(branch, index)


class HkdfDeriver(KeyDeriver):
    """
    Core Lightning keys from a 32 byte hsm_secret. The locator index is the
    channel database id; channel families need the peer's node key.
    """

    def __init__(self, secret: bytes):
        if len(secret) != hkdf.HSM_SECRET_LEN:
            raise DerivationError(
                f"hsm_secret must be {hkdf.HSM_SECRET_LEN} bytes, got {len(secret)}"
            )
        self._secret = secret

    def private_key(self, locator: KeyLocator, peer: bytes | None = None) -> PrivateKey:
        if locator.family == KeyFamily.NODE_KEY:
            return self.node_key()
        if peer is None:
            raise DerivationError(
                f"peer public key is required to derive CLN key {locator}"
            )
        return hkdf.channel_key(self._secret, peer, locator.index, locator.family)

    def node_key(self) -> PrivateKey:
        return hkdf.node_key(self._secret)

    def family_scanner(self, family: KeyFamily, peer: bytes | None = None) -> KeyScanner:
        if family != KeyFamily.NODE_KEY and peer is None:
            raise DerivationError(f"peer public key is required to scan CLN family {family.name}")
        return lambda index: self.private_key(KeyLocator(family=family, index=index), peer)


class KeyRing:
    def __init__(self, deriver: KeyDeriver, params: ChainParams):
        self.deriver = deriver
        self.params = params

    def derive_key(self, locator: KeyLocator, peer: bytes | None = None) -> KeyDescriptor:
        priv = self.deriver.private_key(locator, peer)
        return KeyDescriptor(
            locator=locator, pub_key=priv.public_key.format(compressed=True)
        )

    def derive_private_key(
        self, key: KeyDescriptor | KeyLocator, peer: bytes | None = None
    ) -> PrivateKey:
        """
        Private key of a locator or descriptor. For a descriptor carrying a
        public key the derived key must match it.
        """
        if isinstance(key, KeyLocator):
            return self.deriver.private_key(key, peer)

        priv = self.deriver.private_key(key.locator, peer)
        if key.pub_key is not None:
            derived = priv.public_key.format(compressed=True)
            if derived != key.pub_key:
                raise DerivationError(
                    f"key {key.locator} derives to {derived.hex()}, "
                    f"expected {key.pub_key.hex()}"
                )
        return priv

    def node_pubkey(self) -> bytes:
        return self.deriver.node_key().public_key.format(compressed=True)

    def check_descriptor(
        self,
        pubkey: bytes,
        family: KeyFamily,
        peer: bytes | None = None,
        max_index: int = DEFAULT_KEY_SCAN_LIMIT,
    ) -> KeyLocator:
        """
        Find the index in family whose key is pubkey, trying 0..max_index-1 in
        order and stopping at the first match.
        """
        scan = self.deriver.family_scanner(family, peer)
        logger.debug(f"Scanning {max_index} keys of family {family.name} for {pubkey.hex()}")

        for index in range(max_index):
            if scan(index).public_key.format(compressed=True) == pubkey:
                logger.debug(f"Found key {pubkey.hex()} at {family.name}/{index}")
                return KeyLocator(family=family, index=index)

        raise CannotDeriveKeyError(family, max_index, pubkey)

    def find_multisig_key(
        self,
        target: bytes,
        peer: bytes | None = None,
        max_index: int = DEFAULT_KEY_SCAN_LIMIT,
    ) -> KeyDescriptor:
        locator = self.check_descriptor(target, KeyFamily.MULTISIG, peer, max_index)
        return KeyDescriptor(locator=locator, pub_key=target)

    def revocation_producer(
        self,
        root: KeyDescriptor | KeyLocator,
        multisig_pubkey: bytes | None = None,
        peer: bytes | None = None,
    ) -> RevocationProducer:
        """
        Revocation producer of a channel. Current lnd seeds it with ECDH of the
        revocation root key and our multisig key; old channels used the root
        private key directly, selected by passing no multisig key.
        peer is the counterparty node key for per-peer key schemes.
        """
        priv = self.derive_private_key(root, peer)
        if multisig_pubkey is None:
            return RevocationProducer(priv.secret)
        return RevocationProducer(priv.ecdh(multisig_pubkey))
