"""
Command-line interface for chanrescue.
"""

from __future__ import annotations

import asyncio
import sys
from pathlib import Path
from typing import Annotated

import typer
from chancore.bitcoin.address import (
    encode_wif,
    output_key_to_p2tr_address,
    pubkey_to_p2wpkh_address,
)
from chancore.bitcoin.descriptors import add_checksum
from chancore.bitcoin.taproot import taproot_tweak_pubkey
from chancore.channel.signer import Signer
from chancore.constants import DEFAULT_MAX_CSV_TIMEOUT
from chancore.keychain.bip32 import DerivationMode, derive_children
from chancore.keychain.keyring import KeyRing
from chancore.keychain.path import parse_path
from chancore.models import ChannelBackupSingle, NetworkType
from loguru import logger

from chanrescue.chain import EsploraClient
from chanrescue.config import Settings, get_settings
from chanrescue.forceclose import ForceCloseEngine
from chanrescue.results import (
    SummaryEntry,
    SummaryEntryFile,
    entries_from_channels,
    load_summary_entries,
    write_result_file,
)
from chanrescue.rootkey import load_keyring, load_root_key, read_hsm_secret
from chanrescue.scbclose import ScbCloseEngine, backups_with_close_tx
from chanrescue.store import JsonChannelStore
from chanrescue.summary import summarize_channels
from chanrescue.sweep import sweep_timelock
from chanrescue.zombie import (
    FeeSplit,
    Match,
    make_offer,
    prepare_keys,
    sign_offer,
    write_prepared_keys,
)

app = typer.Typer(
    name="chanrescue",
    help="Recover funds locked in Lightning channels",
    add_completion=False,
)
zombie_app = typer.Typer(
    name="zombie",
    help="Cooperatively close zombie channels by exchanging files with the peer",
    add_completion=False,
)
app.add_typer(zombie_app, name="zombie")


RootKeyOption = Annotated[
    str | None,
    typer.Option("--rootkey", envvar="CHANRESCUE_ROOTKEY", help="BIP32 root key (xprv/tprv)"),
]
MnemonicOption = Annotated[
    str | None,
    typer.Option("--bip39", envvar="CHANRESCUE_MNEMONIC", help="BIP39 mnemonic of the node"),
]
PassphraseOption = Annotated[
    str,
    typer.Option("--passphrase", envvar="CHANRESCUE_PASSPHRASE", help="BIP39 passphrase"),
]
HsmSecretOption = Annotated[
    Path | None,
    typer.Option("--hsm-secret", help="Core Lightning hsm_secret file (unencrypted)"),
]
NetworkOption = Annotated[
    NetworkType | None, typer.Option("--network", "-n", help="Bitcoin network")
]
LogLevelOption = Annotated[str | None, typer.Option("--log-level", "-l")]
ChannelDbOption = Annotated[
    Path, typer.Option("--channeldb", help="JSON dump of the node's channel database")
]
PublishOption = Annotated[
    bool, typer.Option("--publish", help="Broadcast the signed transactions")
]


def setup_logging(level: str) -> None:
    """Configure loguru logging."""
    logger.remove()
    logger.add(
        sys.stderr,
        level=level.upper(),
        format="<green>{time:HH:mm:ss}</green> | <level>{level: <8}</level> | {message}",
    )


def load_settings(network: NetworkType | None, log_level: str | None) -> Settings:
    settings = get_settings()
    if network is not None:
        settings.network = network
    setup_logging(log_level or settings.log_level)
    return settings


def build_keyring(
    settings: Settings,
    rootkey: str | None,
    bip39: str | None,
    passphrase: str,
    hsm_secret: Path | None,
) -> KeyRing:
    secret = read_hsm_secret(hsm_secret) if hsm_secret else None
    return load_keyring(
        settings.chain_params,
        rootkey=rootkey,
        mnemonic=bip39,
        passphrase=passphrase,
        hsm_secret=secret,
        mode=settings.derivation_mode,
    )


def _chain_client(settings: Settings) -> EsploraClient:
    return EsploraClient(settings.api_url, timeout=settings.api_timeout)


def parse_balances(values: list[str]) -> dict[str, int]:
    """Parse repeated chan_point=sats arguments."""
    balances = {}
    for value in values:
        chan_point, sep, amount = value.rpartition("=")
        if not sep or not chan_point or not amount.isdigit():
            raise ValueError(f"invalid balance {value!r}, expected <chan_point>=<sats>")
        balances[chan_point] = int(amount)
    return balances


@app.command()
def derivekey(
    path: Annotated[str, typer.Option("--path", "-p", help="Derivation path, e.g. m/84'/0'/0'")],
    neuter: Annotated[
        bool, typer.Option("--neuter", help="Print the extended public key only")
    ] = False,
    mode: Annotated[
        DerivationMode | None, typer.Option("--mode", help="Child derivation mode")
    ] = None,
    rootkey: RootKeyOption = None,
    bip39: MnemonicOption = None,
    passphrase: PassphraseOption = "",
    network: NetworkOption = None,
    log_level: LogLevelOption = None,
) -> None:
    """Derive a key from the root key and show its public data and WIF."""
    settings = load_settings(network, log_level)
    params = settings.chain_params

    try:
        root = load_root_key(params, rootkey, bip39, passphrase)
        key = derive_children(root, parse_path(path), mode or settings.derivation_mode)
    except Exception as e:
        logger.error(f"Failed to derive key: {e}")
        raise typer.Exit(1)

    pubkey = key.public_key_bytes()
    p2wpkh = pubkey_to_p2wpkh_address(pubkey, params)
    _, output_key = taproot_tweak_pubkey(pubkey)
    p2tr = output_key_to_p2tr_address(output_key, params)

    typer.echo(f"Path:                {path}")
    typer.echo(f"Public key:          {pubkey.hex()}")
    typer.echo(f"Extended public key: {key.neuter().to_string()}")
    typer.echo(f"P2WPKH address:      {p2wpkh}")
    typer.echo(f"P2TR address:        {p2tr}")
    typer.echo(f"wpkh descriptor:     {add_checksum(f'wpkh({pubkey.hex()})')}")
    typer.echo(f"addr descriptor:     {add_checksum(f'addr({p2wpkh})')}")
    if not neuter:
        typer.echo(f"Private key (WIF):   {encode_wif(key.private_key().secret, params)}")


@app.command()
def forceclose(
    channeldb: ChannelDbOption,
    from_summary: Annotated[
        Path | None,
        typer.Option("--fromsummary", help="Summary, listchannels or pendingchannels file"),
    ] = None,
    publish: PublishOption = False,
    rootkey: RootKeyOption = None,
    bip39: MnemonicOption = None,
    passphrase: PassphraseOption = "",
    hsm_secret: HsmSecretOption = None,
    network: NetworkOption = None,
    log_level: LogLevelOption = None,
) -> None:
    """Sign the latest local commitment of every open channel."""
    settings = load_settings(network, log_level)

    try:
        keyring = build_keyring(settings, rootkey, bip39, passphrase, hsm_secret)
        store = JsonChannelStore(channeldb)
        if from_summary:
            entries = load_summary_entries(from_summary)
        else:
            entries = entries_from_channels(store.fetch_all_channels())
        asyncio.run(_run_forceclose(settings, store, Signer(keyring), entries, publish))
    except Exception as e:
        logger.error(f"Force close failed: {e}")
        raise typer.Exit(1)


async def _run_forceclose(
    settings: Settings,
    store: JsonChannelStore,
    signer: Signer,
    entries: list[SummaryEntry],
    publish: bool,
) -> None:
    client = _chain_client(settings) if publish else None
    engine = ForceCloseEngine(store, signer, client)
    try:
        await engine.run(entries, publish=publish)
    finally:
        if client is not None:
            await client.close()

    write_result_file(settings.results_dir, "forceclose", SummaryEntryFile(channels=entries))


@app.command()
def scbforceclose(
    channeldb: ChannelDbOption,
    channel_point: Annotated[
        str | None, typer.Option("--channel-point", help="Only close this channel")
    ] = None,
    publish: PublishOption = False,
    rootkey: RootKeyOption = None,
    bip39: MnemonicOption = None,
    passphrase: PassphraseOption = "",
    network: NetworkOption = None,
    log_level: LogLevelOption = None,
) -> None:
    """Sign the commitments stored in static channel backups."""
    settings = load_settings(network, log_level)

    try:
        keyring = build_keyring(settings, rootkey, bip39, passphrase, None)
        backups = backups_with_close_tx(JsonChannelStore(channeldb).fetch_backups(), channel_point)
    except Exception as e:
        logger.error(f"Loading channel backups failed: {e}")
        raise typer.Exit(1)

    if not backups:
        logger.error("No channel backup with a close transaction found")
        raise typer.Exit(1)

    try:
        asyncio.run(_run_scbforceclose(settings, keyring, backups, publish))
    except Exception as e:
        logger.error(f"SCB force close failed: {e}")
        raise typer.Exit(1)


async def _run_scbforceclose(
    settings: Settings, keyring: KeyRing, backups: list[ChannelBackupSingle], publish: bool
) -> None:
    client = _chain_client(settings) if publish else None
    engine = ScbCloseEngine(Signer(keyring), settings.chain_params, client)
    try:
        results = await engine.run(backups, publish=publish)
    finally:
        if client is not None:
            await client.close()

    for result in results:
        typer.echo(f"{result.channel_point} {result.txid}")
        typer.echo(result.tx.hex())


@app.command()
def sweeptimelock(
    from_summary: Annotated[
        Path, typer.Option("--fromsummary", help="Result file of the forceclose command")
    ],
    sweep_addr: Annotated[str, typer.Option("--sweepaddr", help="Address to sweep funds to")],
    fee_rate: Annotated[
        int | None, typer.Option("--feerate", help="Fee rate in sat/vByte")
    ] = None,
    max_csv_limit: Annotated[
        int, typer.Option("--maxcsvlimit", help="Highest CSV delay to try")
    ] = DEFAULT_MAX_CSV_TIMEOUT,
    publish: PublishOption = False,
    rootkey: RootKeyOption = None,
    bip39: MnemonicOption = None,
    passphrase: PassphraseOption = "",
    network: NetworkOption = None,
    log_level: LogLevelOption = None,
) -> None:
    """Sweep the time locked outputs of confirmed force close transactions."""
    settings = load_settings(network, log_level)

    try:
        keyring = build_keyring(settings, rootkey, bip39, passphrase, None)
        entries = load_summary_entries(from_summary)
        tx = sweep_timelock(
            entries,
            Signer(keyring),
            settings.chain_params,
            sweep_addr,
            fee_rate or settings.fee_rate,
            max_csv_limit,
        )
    except Exception as e:
        logger.error(f"Sweep failed: {e}")
        raise typer.Exit(1)

    typer.echo(tx.hex())
    if publish:
        try:
            asyncio.run(_broadcast(settings, tx.hex()))
        except Exception as e:
            logger.error(f"Publishing sweep transaction failed: {e}")
            raise typer.Exit(1)


async def _broadcast(settings: Settings, tx_hex: str) -> None:
    client = _chain_client(settings)
    try:
        response = await client.broadcast(tx_hex)
        logger.info(f"Published TX {response}")
    finally:
        await client.close()


@app.command()
def summary(
    from_summary: Annotated[
        Path | None,
        typer.Option("--fromsummary", help="Summary, listchannels or pendingchannels file"),
    ] = None,
    channeldb: Annotated[
        Path | None, typer.Option("--channeldb", help="JSON dump of the channel database")
    ] = None,
    network: NetworkOption = None,
    log_level: LogLevelOption = None,
) -> None:
    """Look up every channel on chain and report which ones may hold funds."""
    settings = load_settings(network, log_level)
    if bool(from_summary) == bool(channeldb):
        logger.error("Exactly one of --fromsummary or --channeldb is required")
        raise typer.Exit(1)

    try:
        if from_summary:
            entries = load_summary_entries(from_summary)
        else:
            entries = entries_from_channels(JsonChannelStore(channeldb).fetch_all_channels())
        result = asyncio.run(_run_summary(settings, entries))
    except Exception as e:
        logger.error(f"Summary failed: {e}")
        raise typer.Exit(1)

    typer.echo(f"Open channels:              {result.open_channels}")
    typer.echo(f"Cooperatively closed:       {result.coop_closed_channels}")
    typer.echo(f"Force closed:               {result.force_closed_channels}")
    typer.echo(f"Channels with potential funds: {result.channels_with_potential_funds}")
    typer.echo(f"Funds in open channels:     {result.funds_open_channels} sats")


async def _run_summary(settings: Settings, entries: list[SummaryEntry]) -> SummaryEntryFile:
    client = _chain_client(settings)
    try:
        result = await summarize_channels(client, entries)
    finally:
        await client.close()
    write_result_file(settings.results_dir, "summary", result)
    return result


@zombie_app.command("preparekeys")
def zombie_preparekeys(
    match_file: Annotated[Path, typer.Option("--match-file", help="Match file of the channels")],
    payout_addr: Annotated[
        str, typer.Option("--payout-addr", help="Address our share is paid to")
    ],
    num_keys: Annotated[
        int | None, typer.Option("--num-keys", help="Number of multisig keys to derive")
    ] = None,
    rootkey: RootKeyOption = None,
    bip39: MnemonicOption = None,
    passphrase: PassphraseOption = "",
    hsm_secret: HsmSecretOption = None,
    network: NetworkOption = None,
    log_level: LogLevelOption = None,
) -> None:
    """Add our payout address and multisig keys to a match file."""
    settings = load_settings(network, log_level)

    try:
        keyring = build_keyring(settings, rootkey, bip39, passphrase, hsm_secret)
        prepared = prepare_keys(
            Match.load(match_file), keyring, payout_addr, num_keys or settings.zombie_num_keys
        )
        path = write_prepared_keys(prepared, keyring, settings.results_dir)
    except Exception as e:
        logger.error(f"Preparing keys failed: {e}")
        raise typer.Exit(1)

    typer.echo(f"Send {path} to the other party")


@zombie_app.command("makeoffer")
def zombie_makeoffer(
    node1_keys: Annotated[Path, typer.Option("--node1-keys", help="Prepared keys of node 1")],
    node2_keys: Annotated[Path, typer.Option("--node2-keys", help="Prepared keys of node 2")],
    fee_split: Annotated[
        FeeSplit, typer.Option("--fee-split", help="Who pays the transaction fee")
    ],
    balance: Annotated[
        list[str],
        typer.Option("--balance", help="Our share of a channel as <chan_point>=<sats>"),
    ],
    fee_rate: Annotated[
        int | None, typer.Option("--feerate", help="Fee rate in sat/vByte")
    ] = None,
    rootkey: RootKeyOption = None,
    bip39: MnemonicOption = None,
    passphrase: PassphraseOption = "",
    hsm_secret: HsmSecretOption = None,
    network: NetworkOption = None,
    log_level: LogLevelOption = None,
) -> None:
    """Create a partially signed offer closing all matched channels."""
    settings = load_settings(network, log_level)

    try:
        keyring = build_keyring(settings, rootkey, bip39, passphrase, hsm_secret)
        offer = make_offer(
            Match.load(node1_keys),
            Match.load(node2_keys),
            keyring,
            settings.chain_params,
            parse_balances(balance),
            fee_rate or settings.fee_rate,
            fee_split,
        )
    except Exception as e:
        logger.error(f"Making offer failed: {e}")
        raise typer.Exit(1)

    typer.echo(offer)


@zombie_app.command("signoffer")
def zombie_signoffer(
    psbt: Annotated[str, typer.Option("--psbt", help="Base64 offer from the other party")],
    payout_addr: Annotated[
        str, typer.Option("--payout-addr", help="Our payout address expected in the offer")
    ],
    amount: Annotated[int, typer.Option("--amount", help="Lowest payout in sats we accept")],
    remote_peer: Annotated[
        str | None,
        typer.Option("--remote-peer", help="Node key of the other party (hsm_secret only)"),
    ] = None,
    rootkey: RootKeyOption = None,
    bip39: MnemonicOption = None,
    passphrase: PassphraseOption = "",
    hsm_secret: HsmSecretOption = None,
    network: NetworkOption = None,
    log_level: LogLevelOption = None,
) -> None:
    """Validate and sign an offer, printing the final transaction."""
    settings = load_settings(network, log_level)
    if hsm_secret and not remote_peer:
        logger.error("--remote-peer is required when signing with an hsm_secret")
        raise typer.Exit(1)

    try:
        keyring = build_keyring(settings, rootkey, bip39, passphrase, hsm_secret)
        signed = sign_offer(
            psbt,
            keyring,
            settings.chain_params,
            payout_addr,
            expected_amount=amount,
            peer=bytes.fromhex(remote_peer) if remote_peer else None,
            max_index=settings.key_scan_limit,
        )
    except Exception as e:
        logger.error(f"Signing offer failed: {e}")
        raise typer.Exit(1)

    typer.echo(signed)


def main() -> None:
    """CLI entry point."""
    app()


if __name__ == "__main__":
    main()
