"""
Per-network chain parameters.

Every derivation and address call takes a ChainParams explicitly so that
several networks can be used side by side in one process.
"""

from __future__ import annotations

from dataclasses import dataclass

from chancore.models import NetworkType


@dataclass(frozen=True)
class ChainParams:
    network: NetworkType
    bech32_hrp: str
    hd_coin_type: int
    hd_private_key_id: bytes
    hd_public_key_id: bytes
    pubkey_hash_addr_id: int
    script_hash_addr_id: int
    private_key_id: int
    genesis_hash: str

    @property
    def name(self) -> str:
        return self.network.value


MAINNET_PARAMS = ChainParams(
    network=NetworkType.MAINNET,
    bech32_hrp="bc",
    hd_coin_type=0,
    hd_private_key_id=bytes.fromhex("0488ade4"),
    hd_public_key_id=bytes.fromhex("0488b21e"),
    pubkey_hash_addr_id=0x00,
    script_hash_addr_id=0x05,
    private_key_id=0x80,
    genesis_hash="000000000019d6689c085ae165831e934ff763ae46a2a6c172b3f1b60a8ce26f",
)

TESTNET_PARAMS = ChainParams(
    network=NetworkType.TESTNET,
    bech32_hrp="tb",
    hd_coin_type=1,
    hd_private_key_id=bytes.fromhex("04358394"),
    hd_public_key_id=bytes.fromhex("043587cf"),
    pubkey_hash_addr_id=0x6F,
    script_hash_addr_id=0xC4,
    private_key_id=0xEF,
    genesis_hash="000000000933ea01ad0ee984209779baaec3ced90fa3f408719526f8d77f4943",
)

SIGNET_PARAMS = ChainParams(
    network=NetworkType.SIGNET,
    bech32_hrp="tb",
    hd_coin_type=1,
    hd_private_key_id=bytes.fromhex("04358394"),
    hd_public_key_id=bytes.fromhex("043587cf"),
    pubkey_hash_addr_id=0x6F,
    script_hash_addr_id=0xC4,
    private_key_id=0xEF,
    genesis_hash="00000008819873e925422c1ff0f99f7cc9bbb232af63a077a480a3633bee1ef6",
)

REGTEST_PARAMS = ChainParams(
    network=NetworkType.REGTEST,
    bech32_hrp="bcrt",
    hd_coin_type=1,
    hd_private_key_id=bytes.fromhex("04358394"),
    hd_public_key_id=bytes.fromhex("043587cf"),
    pubkey_hash_addr_id=0x6F,
    script_hash_addr_id=0xC4,
    private_key_id=0xEF,
    genesis_hash="0f9188f13cb7b2c71f2a335e3a4fc328bf5beb436012afca590b1a11466e2206",
)

_PARAMS_BY_NETWORK = {
    NetworkType.MAINNET: MAINNET_PARAMS,
    NetworkType.TESTNET: TESTNET_PARAMS,
    NetworkType.SIGNET: SIGNET_PARAMS,
    NetworkType.REGTEST: REGTEST_PARAMS,
}


def get_chain_params(network: NetworkType | str) -> ChainParams:
    """Look up the parameters for a network name or NetworkType."""
    try:
        return _PARAMS_BY_NETWORK[NetworkType(network)]
    except ValueError as e:
        raise ValueError(f"Unknown network: {network}") from e
