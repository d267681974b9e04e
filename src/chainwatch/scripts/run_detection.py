#!/usr/bin/env python3
"""
Run money-laundering detection over a transfer snapshot or the ledger API.

Loads transfers (raw ledger activity or exported transfer records) and
optional address risk profiles from JSON files, or reads them from the
ledger API configured in CHAINWATCH_LEDGER_API_URL. Analyzes one address or
a group of addresses and writes the alerts and statistics as JSON.

Example:
    chainwatch-detect --transfers data/transfers.json \\
        --profiles data/profiles.json --address 0xabc --output alerts.json
"""

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import Any, Optional

from chainwatch.config import settings
from chainwatch.laundering.detector import MoneyLaunderingDetector
from chainwatch.laundering.sources import HttpLedgerSource, InMemoryLedger
from chainwatch.laundering.types import AddressRiskProfile, MoneyLaunderingError

logging.basicConfig(
    level=getattr(logging, settings.log_level),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


def _profile_from_dict(address: str, item: dict[str, Any]) -> AddressRiskProfile:
    return AddressRiskProfile(
        address=address,
        risk_score=float(item.get("risk_score", 0.0)),
        first_seen=item.get("first_seen"),
        last_active=item.get("last_active"),
        total_transactions=int(item.get("total_transactions", 0)),
        tags=list(item.get("tags") or []),
        metadata=dict(item.get("metadata") or {}),
    )


def load_profiles(data: Any) -> list[AddressRiskProfile]:
    """
    Load profiles from a list of profile dicts, or a mapping of address to
    either a risk score or a profile dict.
    """
    if isinstance(data, dict):
        return [
            _profile_from_dict(address, value)
            if isinstance(value, dict)
            else AddressRiskProfile(address=address, risk_score=float(value))
            for address, value in data.items()
        ]
    return [_profile_from_dict(item["address"], item) for item in data]


def load_ledger(transfers_path: Path, profiles_path: Optional[Path]) -> InMemoryLedger:
    with open(transfers_path) as f:
        transfers = json.load(f)

    profiles: list[AddressRiskProfile] = []
    if profiles_path:
        with open(profiles_path) as f:
            profiles = load_profiles(json.load(f))

    ledger = InMemoryLedger(transfers, profiles)
    logger.info(f"Loaded {ledger.transfer_count} transfers and {len(profiles)} profiles")
    return ledger


async def analyze(
    detector: MoneyLaunderingDetector, args: argparse.Namespace
) -> dict[str, Any]:
    if len(args.address) == 1:
        result = await detector.analyze_address(args.address[0], args.start, args.end)
    else:
        result = await detector.analyze_address_group(args.address, args.start, args.end)
    return result.to_dict()


async def run(args: argparse.Namespace) -> dict[str, Any]:
    flow_config = settings.flow_config()
    alert_config = settings.alert_config()

    if args.transfers:
        ledger = load_ledger(args.transfers, args.profiles)
        detector = MoneyLaunderingDetector(
            ledger, ledger, flow_config=flow_config, alert_config=alert_config
        )
        return await analyze(detector, args)

    logger.info(f"Reading transfers from {settings.ledger_api_url}")
    async with HttpLedgerSource(
        settings.ledger_api_url, timeout=settings.ledger_api_timeout
    ) as source:
        detector = MoneyLaunderingDetector(
            source, source, flow_config=flow_config, alert_config=alert_config
        )
        return await analyze(detector, args)


def parse_args(argv: Optional[list[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Detect money-laundering patterns")
    parser.add_argument(
        "--transfers",
        type=Path,
        help="Transfers JSON file (defaults to the ledger API in CHAINWATCH_LEDGER_API_URL)",
    )
    parser.add_argument("--profiles", type=Path, help="Address risk profiles JSON file")
    parser.add_argument(
        "--address",
        action="append",
        required=True,
        help="Address to analyze (repeat for a group)",
    )
    parser.add_argument("--start", type=int, help="Window start, epoch millis")
    parser.add_argument("--end", type=int, help="Window end, epoch millis")
    parser.add_argument("--output", type=Path, help="Write result JSON here instead of stdout")
    args = parser.parse_args(argv)

    if not args.transfers and not settings.ledger_api_url:
        parser.error("--transfers is required when CHAINWATCH_LEDGER_API_URL is not set")
    return args


def main(argv: Optional[list[str]] = None) -> int:
    args = parse_args(argv)

    try:
        result = asyncio.run(run(args))
    except MoneyLaunderingError as e:
        logger.error(str(e))
        return 1

    output = json.dumps(result, indent=2)
    if args.output:
        args.output.write_text(output)
        logger.info(f"Wrote {len(result['alerts'])} alerts to {args.output}")
    else:
        print(output)
    return 0


if __name__ == "__main__":
    sys.exit(main())
