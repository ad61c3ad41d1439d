"""
PoP Party command line client.

    popparty keygen
    popparty show      --instance <hex>
    popparty statement --instance <hex>
    popparty mine      --instance <hex> --secret <hex> --target <hex>

Ledger connection and defaults come from --config (JSON, see
popparty.config) and may be overridden with --url.
"""

from __future__ import annotations
import argparse
import asyncio
import json
import logging
import sys
from typing import List, Optional

from popparty.config import ClientConfig, setup_logging
from popparty.core.types import InstanceID, KeyPair, SecretKey
from popparty.errors import ConfigError, PopPartyError
from popparty.ledger.rpc import RPCLedgerClient
from popparty.party.instance import PopPartyInstance

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="popparty", description="Proof-of-personhood party client")
    parser.add_argument("--config", "-c", type=str, help="Path to config file")
    parser.add_argument("--url", type=str, help="Ledger JSON-RPC URL")
    parser.add_argument("--log-level", type=str, help="Log level")

    commands = parser.add_subparsers(dest="command", required=True)

    commands.add_parser("keygen", help="Generate a personhood key pair")

    show = commands.add_parser("show", help="Print the party record")
    show.add_argument("--instance", "-i", type=str, help="Party instance id (hex)")

    statement = commands.add_parser("statement", help="Print the final statement as JSON")
    statement.add_argument("--instance", "-i", type=str, help="Party instance id (hex)")

    mine = commands.add_parser("mine", help="Claim the mining reward anonymously")
    mine.add_argument("--instance", "-i", type=str, help="Party instance id (hex)")
    mine.add_argument("--secret", "-s", type=str, required=True, help="Personhood secret (hex)")
    mine.add_argument("--target", "-t", type=str, help="Reward coin instance id (hex)")

    return parser


def load_config(args: argparse.Namespace) -> ClientConfig:
    config = ClientConfig.load(args.config) if args.config else ClientConfig()
    if args.url:
        config.ledger.rpc_url = args.url
    if args.log_level:
        config.log.level = args.log_level
    if getattr(args, "instance", None):
        config.party.instance_id = args.instance
    if getattr(args, "target", None):
        config.party.reward_target = args.target
    config.check()
    return config


def _require(value: Optional[str], what: str) -> InstanceID:
    if value is None:
        raise ConfigError([f"{what} is required"])
    return InstanceID.from_hex(value)


async def run(args: argparse.Namespace, config: ClientConfig) -> int:
    party_id = _require(config.party.instance_id, "--instance")

    async with RPCLedgerClient.from_config(config.ledger) as ledger:
        party = await PopPartyInstance.from_ledger(ledger, party_id)

        if args.command == "show":
            print(json.dumps(party.to_dict(), indent=2))
        elif args.command == "statement":
            print(party.final_statement().to_json())
        elif args.command == "mine":
            target = _require(config.party.reward_target, "--target")
            tag = await party.mine(SecretKey.from_hex(args.secret), target)
            print(tag.hex())
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)

    if args.command == "keygen":
        pair = KeyPair.generate()
        print(json.dumps({"secret": pair.secret.data.hex(), "public": pair.public.hex()}, indent=2))
        return 0

    try:
        config = load_config(args)
        setup_logging(config.log)
        return asyncio.run(run(args, config))
    except PopPartyError as e:
        logger.error(e.message)
        print(json.dumps(e.to_dict(), indent=2), file=sys.stderr)
        return 1
    except ValueError as e:
        print(f"error: {e}", file=sys.stderr)
        return 2


if __name__ == "__main__":
    sys.exit(main())
