"""
Result and summary files.

Field names follow the JSON files produced by the established recovery
tooling so that summaries can be exchanged with it. Summary entries can also
be read from `lncli listchannels` and `lncli pendingchannels` dumps.
"""

from __future__ import annotations

import json
from datetime import datetime
from pathlib import Path
from typing import Any

from chancore.models import OpenChannelState, OutPoint
from loguru import logger
from pydantic import BaseModel, Field, ValidationError, model_validator


class ClosingTx(BaseModel):
    txid: str
    force_close: bool = False
    all_outputs_spent: bool = False
    our_addr: str = ""
    to_remote_addr: str = ""
    sweep_privkey: str = ""
    conf_height: int = 0


class BasePoint(BaseModel):
    family: int = 0
    index: int = 0
    pubkey: str


class Out(BaseModel):
    script: str
    script_asm: str = ""
    value: int


class ForceCloseRecord(BaseModel):
    """A signed commitment plus what is needed to sweep our delayed output later."""

    txid: str
    serialized: str
    csv_delay: int
    delay_basepoint: BasePoint
    revocation_basepoint: BasePoint
    commit_point: str
    outs: list[Out] = Field(default_factory=list)


class SummaryEntry(BaseModel):
    remote_pubkey: str = ""
    channel_point: str
    funding_txid: str = ""
    funding_tx_index: int = 0
    capacity: int = 0
    initiator: bool = False
    local_balance: int = 0
    remote_balance: int = 0
    chan_exists_onchain: bool = False
    has_potential_funds: bool = False
    closing_tx: ClosingTx | None = None
    force_close: ForceCloseRecord | None = None

    @model_validator(mode="after")
    def fill_funding_outpoint(self) -> SummaryEntry:
        # lncli dumps only carry the channel point
        outpoint = OutPoint.parse(self.channel_point)
        if not self.funding_txid:
            self.funding_txid = outpoint.txid
            self.funding_tx_index = outpoint.index
        return self


class SummaryEntryFile(BaseModel):
    channels: list[SummaryEntry] = Field(default_factory=list)
    open_channels: int = 0
    closed_channels: int = 0
    force_closed_channels: int = 0
    coop_closed_channels: int = 0
    fully_spent_channels: int = 0
    channels_with_unspent_funds: int = 0
    channels_with_potential_funds: int = 0
    funds_open_channels: int = 0
    funds_closed_channels: int = 0
    funds_closed_channels_spent: int = 0
    funds_force_closed_maybe_ours: int = 0
    funds_coop_closed_maybe_ours: int = 0


PENDING_CHANNEL_SECTIONS = (
    "pending_open_channels",
    "pending_closing_channels",
    "pending_force_closing_channels",
    "waiting_close_channels",
)


def entries_from_channels(states: list[OpenChannelState]) -> list[SummaryEntry]:
    """Summary entries of channels read from a channel store."""
    return [
        SummaryEntry(
            remote_pubkey=state.remote_node_pub.hex() if state.remote_node_pub else "",
            channel_point=str(state.funding_outpoint),
            capacity=state.capacity,
            initiator=state.is_initiator,
            local_balance=state.local_commitment.local_balance,
            remote_balance=state.local_commitment.remote_balance,
        )
        for state in states
    ]


def _pending_entry(item: dict[str, Any]) -> dict[str, Any]:
    channel = item.get("channel", {})
    return {
        "remote_pubkey": channel.get("remote_node_pub", ""),
        "channel_point": channel.get("channel_point", ""),
        "capacity": channel.get("capacity", 0),
        "local_balance": channel.get("local_balance", 0),
        "remote_balance": channel.get("remote_balance", 0),
    }


def load_summary_entries(path: Path | str) -> list[SummaryEntry]:
    """
    Read channel entries from a summary/result file, an `lncli listchannels`
    dump or an `lncli pendingchannels` dump.
    """
    path = Path(path)
    try:
        raw = json.loads(path.read_text())
    except OSError as e:
        raise ValueError(f"cannot read input file {path}: {e}") from e
    except json.JSONDecodeError as e:
        raise ValueError(f"input file {path} is not valid JSON: {e}") from e

    if not isinstance(raw, dict):
        raise ValueError(f"input file {path} must contain a JSON object")

    if any(section in raw for section in PENDING_CHANNEL_SECTIONS):
        items = [
            _pending_entry(item)
            for section in PENDING_CHANNEL_SECTIONS
            for item in raw.get(section) or []
        ]
    elif "channels" in raw:
        items = raw["channels"] or []
    else:
        raise ValueError(f"input file {path} contains no channels")

    try:
        entries = [SummaryEntry.model_validate(item) for item in items]
    except ValidationError as e:
        raise ValueError(f"invalid channel entry in {path}: {e}") from e

    logger.info(f"Read {len(entries)} channel entries from {path}")
    return entries


def write_result_file(
    results_dir: Path | str,
    prefix: str,
    model: BaseModel,
    date_format: str = "%Y-%m-%d-%H-%M-%S",
    suffix: str = "",
    exclude_none: bool = False,
) -> Path:
    """
    Write model as indented JSON to <results_dir>/<prefix>-<date>[-suffix].json.
    An existing file is never overwritten: identical content is reused and
    different content goes to a numbered sibling.
    """
    results_dir = Path(results_dir)
    results_dir.mkdir(parents=True, exist_ok=True)

    stem = f"{prefix}-{datetime.now().strftime(date_format)}"
    if suffix:
        stem = f"{stem}-{suffix}"
    content = model.model_dump_json(indent=2, exclude_none=exclude_none) + "\n"

    path = results_dir / f"{stem}.json"
    counter = 1
    while True:
        try:
            with path.open("x") as f:
                f.write(content)
            break
        except FileExistsError:
            if path.read_text() == content:
                logger.info(f"Result already written to {path}")
                return path
            path = results_dir / f"{stem}-{counter}.json"
            counter += 1

    logger.info(f"Writing result to {path}")
    return path
