"""
Ledger and address-profile collaborators.

The detector reads transfer activity and address risk profiles through two
small protocols. Two implementations are provided:
- InMemoryLedger: a fixed snapshot, used by scripts and tests
- HttpLedgerSource: a JSON HTTP API reached through httpx
"""

import logging
from collections import defaultdict, deque
from typing import Any, Iterable, Optional, Protocol, Union

import httpx

from chainwatch.laundering.types import (
    AddressRiskProfile,
    TransferKind,
    TransferRecord,
)

logger = logging.getLogger(__name__)


# Lock-and-mint / burn-and-release bridge contracts
KNOWN_BRIDGES = {
    "0x3ee18b2214aff97000d974cf647e7c347e8fa585",  # Wormhole token bridge
    "0x8731d54e9d02c286767d56ac03e8037c07e01e98",  # Stargate router
    "0x3666f603cc164936c1b87e207f36beba4ac5f18a",  # Hop USDC bridge
    "0x5427fefa711eff984124bfbb1ab6fbf5e3da1820",  # Across spoke pool
    "0x40ec5b33f54e0e8a33a975908c5ba1c14e5bbbdf",  # Polygon ERC20 bridge
}

# 4-byte function selectors
BRIDGE_SELECTORS = {
    "0x0f5287b0",  # transferTokens (Wormhole)
    "0x9fbf10fc",  # swap (Stargate)
    "0xdeace8f5",  # sendToL2 (Hop)
    "0x49228978",  # deposit (Across)
    "0xe3dec8fb",  # depositFor (Polygon)
}

SWAP_SELECTORS = {
    "0x7ff36ab5",  # swapExactETHForTokens
    "0x18cbafe5",  # swapExactTokensForETH
    "0x38ed1739",  # swapExactTokensForTokens
    "0x414bf389",  # exactInputSingle (Uniswap V3)
    "0x3593564c",  # execute (Universal Router)
}

MULTI_TRANSFER_SELECTORS = {
    "0xab883d28",  # multisendEther (Disperse)
    "0xc73a2d60",  # disperseToken
    "0x8d80ff0a",  # multiSend (Safe)
}


class TransferSource(Protocol):
    """Protocol for reading transfer activity from a ledger."""

    async def fetch_transfer_activity(
        self,
        address: str,
        start_time: Optional[int] = None,
        end_time: Optional[int] = None,
    ) -> list[TransferRecord]:
        """Get transfers relevant to an address within [start_time, end_time]."""
        ...


class ProfileSource(Protocol):
    """Protocol for reading address risk profiles."""

    async def get_profile(self, address: str) -> AddressRiskProfile:
        """Get the risk profile for an address."""
        ...


def _selector(tx_input: Optional[str]) -> str:
    if not tx_input or len(tx_input) < 10:
        return ""
    return tx_input[:10].lower()


def classify_transfer_kind(activity: dict[str, Any]) -> TransferKind:
    """Classify a raw ledger activity into a transfer kind."""
    tx_type = activity.get("type", "transfer")
    if tx_type != "contract_call":
        return TransferKind.DIRECT

    to_address = (activity.get("to") or "").lower()
    selector = _selector(activity.get("input"))

    if to_address in KNOWN_BRIDGES or selector in BRIDGE_SELECTORS:
        return TransferKind.BRIDGE
    if selector in SWAP_SELECTORS:
        return TransferKind.SWAP
    if selector in MULTI_TRANSFER_SELECTORS:
        return TransferKind.SPLIT
    return TransferKind.DIRECT


def transfer_from_activity(activity: dict[str, Any]) -> TransferRecord:
    """
    Normalize a raw ledger activity into a TransferRecord.

    Expected keys: hash, from, to, value, timestamp, and optionally
    type, input, gasUsed, gasPrice, blockNumber and tokenInfo
    ({address, symbol, amount}). Token info overrides asset and amount.
    """
    token = activity.get("tokenInfo") or {}
    asset = token.get("symbol") or activity.get("asset") or "ETH"
    amount = token.get("amount", activity.get("value", 0))

    metadata = {
        key: activity[key]
        for key in ("gasUsed", "gasPrice", "input", "blockNumber", "status")
        if key in activity
    }
    if token.get("address"):
        metadata["token_address"] = token["address"]

    return TransferRecord(
        from_address=activity["from"],
        to_address=activity["to"],
        amount=int(amount),
        asset=asset,
        timestamp=int(activity["timestamp"]),
        tx_id=activity["hash"],
        kind=classify_transfer_kind(activity),
        metadata=metadata,
    )


def normalize_transfer(item: Union[TransferRecord, dict[str, Any]]) -> TransferRecord:
    """
    Normalize a transfer to TransferRecord format.

    Handles TransferRecord objects, TransferRecord.to_dict() output and raw
    ledger activity dicts.
    """
    if isinstance(item, TransferRecord):
        return item
    if "from_address" in item:
        return TransferRecord.from_dict(item)
    return transfer_from_activity(item)


def _in_window(ts: int, start_time: Optional[int], end_time: Optional[int]) -> bool:
    if start_time is not None and ts < start_time:
        return False
    if end_time is not None and ts > end_time:
        return False
    return True


class InMemoryLedger:
    """
    Fixed ledger snapshot implementing both collaborator protocols.

    A fetch for an address returns its inbound transfers plus every
    transfer reachable forward from it, all within the requested window,
    ordered by timestamp.
    """

    def __init__(
        self,
        transfers: Optional[Iterable[Union[TransferRecord, dict[str, Any]]]] = None,
        profiles: Optional[Iterable[AddressRiskProfile]] = None,
    ):
        self._transfers: list[TransferRecord] = []
        self._outgoing: dict[str, list[TransferRecord]] = defaultdict(list)
        self._incoming: dict[str, list[TransferRecord]] = defaultdict(list)
        self._profiles: dict[str, AddressRiskProfile] = {}

        for transfer in transfers or []:
            self.add_transfer(transfer)
        for profile in profiles or []:
            self.add_profile(profile)

    def add_transfer(self, transfer: Union[TransferRecord, dict[str, Any]]) -> None:
        record = normalize_transfer(transfer)
        self._transfers.append(record)
        self._outgoing[record.from_address].append(record)
        self._incoming[record.to_address].append(record)

    def add_profile(self, profile: AddressRiskProfile) -> None:
        self._profiles[profile.address] = profile

    @property
    def transfer_count(self) -> int:
        return len(self._transfers)

    async def fetch_transfer_activity(
        self,
        address: str,
        start_time: Optional[int] = None,
        end_time: Optional[int] = None,
    ) -> list[TransferRecord]:
        found: dict[tuple[str, str, str], TransferRecord] = {}

        for transfer in self._incoming.get(address, []):
            if _in_window(transfer.timestamp, start_time, end_time):
                found[transfer.dedup_key] = transfer

        queue = deque([address])
        reached = {address}
        while queue:
            current = queue.popleft()
            for transfer in self._outgoing.get(current, []):
                if not _in_window(transfer.timestamp, start_time, end_time):
                    continue
                found[transfer.dedup_key] = transfer
                if transfer.to_address not in reached:
                    reached.add(transfer.to_address)
                    queue.append(transfer.to_address)

        return sorted(found.values(), key=lambda t: t.timestamp)

    async def get_profile(self, address: str) -> AddressRiskProfile:
        return self._profiles.get(address) or AddressRiskProfile(address=address)


class HttpLedgerSource:
    """
    Ledger and profile collaborator backed by a JSON HTTP API.

    Endpoints:
        GET {base_url}/addresses/{address}/transfers?start=&end=
            -> {"transfers": [activity or transfer dict, ...]}
        GET {base_url}/addresses/{address}/profile
            -> {"address": ..., "risk_score": ..., ...}

    HTTP errors propagate; the detector wraps them.
    """

    def __init__(
        self,
        base_url: str,
        timeout: float = 30.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self._client = client or httpx.AsyncClient(base_url=self.base_url, timeout=timeout)
        self._owns_client = client is None

    async def close(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def __aenter__(self) -> "HttpLedgerSource":
        return self

    async def __aexit__(self, *args) -> None:
        await self.close()

    async def fetch_transfer_activity(
        self,
        address: str,
        start_time: Optional[int] = None,
        end_time: Optional[int] = None,
    ) -> list[TransferRecord]:
        params: dict[str, int] = {}
        if start_time is not None:
            params["start"] = start_time
        if end_time is not None:
            params["end"] = end_time

        response = await self._client.get(
            f"{self.base_url}/addresses/{address}/transfers", params=params
        )
        response.raise_for_status()
        items = response.json().get("transfers", [])
        logger.debug(f"Fetched {len(items)} transfers for {address}")

        transfers = [normalize_transfer(item) for item in items]
        transfers.sort(key=lambda t: t.timestamp)
        return transfers

    async def get_profile(self, address: str) -> AddressRiskProfile:
        response = await self._client.get(f"{self.base_url}/addresses/{address}/profile")
        if response.status_code == 404:
            return AddressRiskProfile(address=address)
        response.raise_for_status()
        data = response.json()
        return AddressRiskProfile(
            address=data.get("address", address),
            risk_score=data.get("risk_score", 0.0),
            first_seen=data.get("first_seen"),
            last_active=data.get("last_active"),
            total_transactions=data.get("total_transactions", 0),
            tags=list(data.get("tags") or []),
            metadata=dict(data.get("metadata") or {}),
        )
