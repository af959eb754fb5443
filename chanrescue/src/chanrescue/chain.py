"""
Block explorer access for looking up channel transactions and publishing
signed recovery transactions.

Talks to an Esplora compatible REST API (mempool.space, blockstream.info or a
self hosted electrs). Calls are plain request/response pairs without retries:
a failure surfaces immediately and the caller decides whether the item can be
skipped.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any

import httpx
from loguru import logger

TX_NOT_FOUND_BODY = "Transaction not found"


class ChainClientError(Exception):
    """Transport failure or an unexpected answer from the explorer."""

    pass


class TxNotFoundError(ChainClientError):
    """The explorer does not know the requested transaction."""

    pass


@dataclass
class Outspend:
    spent: bool
    txid: str | None = None
    vin: int | None = None
    confirmed: bool = False
    block_height: int | None = None


@dataclass
class TxOutput:
    value: int
    scriptpubkey: str
    scriptpubkey_asm: str = ""
    scriptpubkey_type: str = ""
    scriptpubkey_address: str | None = None
    outspend: Outspend | None = None


@dataclass
class TxInput:
    txid: str
    vout: int
    sequence: int
    prevout: TxOutput | None = None


@dataclass
class TxInfo:
    txid: str
    inputs: list[TxInput] = field(default_factory=list)
    outputs: list[TxOutput] = field(default_factory=list)
    confirmed: bool = False
    block_height: int | None = None


def _parse_outspend(data: dict[str, Any]) -> Outspend:
    status = data.get("status") or {}
    return Outspend(
        spent=bool(data.get("spent", False)),
        txid=data.get("txid"),
        vin=data.get("vin"),
        confirmed=bool(status.get("confirmed", False)),
        block_height=status.get("block_height"),
    )


def _parse_output(data: dict[str, Any]) -> TxOutput:
    return TxOutput(
        value=int(data["value"]),
        scriptpubkey=data["scriptpubkey"],
        scriptpubkey_asm=data.get("scriptpubkey_asm", ""),
        scriptpubkey_type=data.get("scriptpubkey_type", ""),
        scriptpubkey_address=data.get("scriptpubkey_address"),
    )


def parse_transaction(data: dict[str, Any]) -> TxInfo:
    """Build a TxInfo from an Esplora /tx/:txid response."""
    try:
        inputs = [
            TxInput(
                txid=vin.get("txid", ""),
                vout=int(vin.get("vout", 0)),
                sequence=int(vin["sequence"]),
                prevout=_parse_output(vin["prevout"]) if vin.get("prevout") else None,
            )
            for vin in data.get("vin", [])
        ]
        outputs = [_parse_output(vout) for vout in data.get("vout", [])]
        status = data.get("status") or {}
        return TxInfo(
            txid=data["txid"],
            inputs=inputs,
            outputs=outputs,
            confirmed=bool(status.get("confirmed", False)),
            block_height=status.get("block_height"),
        )
    except (KeyError, TypeError, ValueError) as e:
        raise ChainClientError(f"Malformed transaction data: {e}") from e


class ChainClient(ABC):
    """Read access to the chain plus transaction broadcast."""

    @abstractmethod
    async def fetch_transaction(self, txid: str) -> TxInfo:
        """Get a transaction including the spend status of each output"""

    @abstractmethod
    async def outspend(self, txid: str, vout: int) -> Outspend:
        """Get the spend status of one output"""

    @abstractmethod
    async def broadcast(self, raw_tx_hex: str) -> str:
        """Broadcast a raw transaction, returns the explorer's response"""

    async def close(self) -> None:
        """Close client connection"""
        pass


class EsploraClient(ChainClient):
    def __init__(
        self,
        base_url: str,
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.client = httpx.AsyncClient(timeout=timeout, transport=transport)

    async def _api_call(
        self, method: str, endpoint: str, content: str | None = None
    ) -> httpx.Response:
        url = f"{self.base_url}/{endpoint}"

        try:
            if method == "GET":
                response = await self.client.get(url)
            elif method == "POST":
                response = await self.client.post(
                    url, content=content, headers={"Content-Type": "text/plain"}
                )
            else:
                raise ValueError(f"Unsupported HTTP method: {method}")
        except httpx.HTTPError as e:
            logger.error(f"Explorer API call failed: {endpoint} - {e}")
            raise ChainClientError(
                f"error talking to API '{url}', server might be experiencing "
                f"temporary issues, try again later: {e}"
            ) from e

        if response.status_code == 404 or response.text.strip() == TX_NOT_FOUND_BODY:
            raise TxNotFoundError(f"{endpoint}: transaction not found")
        if response.is_error:
            logger.error(f"Explorer API call failed: {endpoint} - HTTP {response.status_code}")
            raise ChainClientError(
                f"API '{url}' returned HTTP {response.status_code}: {response.text.strip()}"
            )
        return response

    async def _get_json(self, endpoint: str) -> Any:
        response = await self._api_call("GET", endpoint)
        try:
            return response.json()
        except ValueError as e:
            raise ChainClientError(f"error decoding data from API '{endpoint}': {e}") from e

    async def fetch_transaction(self, txid: str) -> TxInfo:
        tx = parse_transaction(await self._get_json(f"tx/{txid}"))
        for idx, output in enumerate(tx.outputs):
            output.outspend = await self.outspend(txid, idx)
        logger.debug(f"Fetched transaction {txid} with {len(tx.outputs)} outputs")
        return tx

    async def outspend(self, txid: str, vout: int) -> Outspend:
        data = await self._get_json(f"tx/{txid}/outspend/{vout}")
        if not isinstance(data, dict):
            raise ChainClientError(f"unexpected outspend data for {txid}:{vout}")
        return _parse_outspend(data)

    async def broadcast(self, raw_tx_hex: str) -> str:
        response = await self._api_call("POST", "tx", content=raw_tx_hex)
        return response.text.strip()

    async def close(self) -> None:
        await self.client.aclose()
