"""
Configuration management for chanrescue.
"""

from __future__ import annotations

from pathlib import Path

from chancore.constants import DEFAULT_FEE_RATE, DEFAULT_KEY_SCAN_LIMIT, NUM_ZOMBIE_MULTISIG_KEYS
from chancore.keychain.bip32 import DerivationMode
from chancore.models import NetworkType
from chancore.params import ChainParams, get_chain_params
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="CHANRESCUE_",
        case_sensitive=False,
    )

    network: NetworkType = NetworkType.MAINNET

    # Esplora compatible block explorer
    api_url: str = "https://api.node-status.io"
    api_timeout: float = Field(default=30.0, gt=0)

    results_dir: Path = Path("results")

    log_level: str = "INFO"

    key_scan_limit: int = Field(default=DEFAULT_KEY_SCAN_LIMIT, ge=1, le=100_000)
    zombie_num_keys: int = Field(default=NUM_ZOMBIE_MULTISIG_KEYS, ge=1)
    derivation_mode: DerivationMode = DerivationMode.LND

    fee_rate: int = Field(default=DEFAULT_FEE_RATE, ge=1)  # sat/vByte

    @property
    def chain_params(self) -> ChainParams:
        return get_chain_params(self.network)


def get_settings() -> Settings:
    return Settings()
