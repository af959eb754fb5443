"""
Bitcoin and Lightning constants used across key derivation and script building.
"""

from __future__ import annotations

# secp256k1 curve order
SECP256K1_N = int("FFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFEBAAEDCE6AF48A03BBFD25E8CD0364141", 16)

HARDENED_KEY_START = 0x80000000

# BIP43 purpose used by lnd for all channel and node keys
BIP0043_PURPOSE = 1017

# Range lnd scans when restoring a channel from a backup
MAX_KEY_RANGE_SCAN = 100_000

# Default number of candidate indices tried when looking up a multisig key
DEFAULT_KEY_SCAN_LIMIT = 5000

# Number of multisig keys each party publishes during zombie recovery
NUM_ZOMBIE_MULTISIG_KEYS = 2500

# Value of each anchor output on anchor channels
ANCHOR_OUTPUT_VALUE = 330

# Dust limit for a P2WSH sized output, used for zombie payouts
P2WSH_DUST_LIMIT = 330

# Default CSV range tried when brute forcing a to_local delay
DEFAULT_MAX_CSV_TIMEOUT = 2000

DEFAULT_FEE_RATE = 2  # sat/vByte

SEQUENCE_FINAL = 0xFFFFFFFF

# Signature hash types
SIGHASH_DEFAULT = 0x00
SIGHASH_ALL = 0x01
SIGHASH_NONE = 0x02
SIGHASH_SINGLE = 0x03
SIGHASH_ANYONECANPAY = 0x80

# Taproot
TAPSCRIPT_LEAF_VERSION = 0xC0

# lnd's "nothing up my sleeve" internal key for taproot commitment outputs
TAPROOT_NUMS_KEY = bytes.fromhex(
    "02dca094751109d0bd055d03565874e8276dd53e926b44e3bd1bb6bf4bc130a279"
)

# Per-commitment secrets are indexed in a 48 bit space
SHACHAIN_MAX_HEIGHT = 48
SHACHAIN_MAX_INDEX = (1 << SHACHAIN_MAX_HEIGHT) - 1
