#!/usr/bin/env python3

import json
import logging
import sys
from argparse import ArgumentParser
from dataclasses import replace
from typing import Any

from config import NfcSettings, configure_logging
from service import NfcService, OperationResult

logger = logging.getLogger(__name__)

TAG_COMMANDS = ("read", "write", "format")

def _parse_payload(raw: str) -> Any:
    try:
        return json.loads(raw)
    except ValueError:
        return raw

def _get_args(argv: list[str] | None = None):
    parser = ArgumentParser(description="Read, encode and format NTAG cards through a PC/SC reader")
    parser.add_argument("command", choices=("status", "readers", "info", "types") + TAG_COMMANDS)
    parser.add_argument("payload", nargs="?", help="JSON object (or plain text) to write on the card")
    parser.add_argument("-r", "--reader", required=False, help="Name of the reader to use")
    parser.add_argument("-v", "--verbose", required=False, action="store_true")
    parser.add_argument("-t", "--timeout", required=False, type=int, default=10, help="The maximum time in seconds to wait for a card")
    parser.add_argument("--simulate", required=False, action="store_true", help="Never touch the hardware")

    args = parser.parse_args(argv)
    if args.command == "write" and args.payload is None:
        parser.error("write needs a payload")
    return args

def _run(service: NfcService, args) -> Any:
    match args.command:
        case "status":
            return service.get_status()
        case "readers":
            return service.list_readers()
        case "info":
            return service.get_tag_type_info()
        case "types":
            return service.supported_tag_types()

    if service.capability.available:
        logger.info("Waiting for card...")
        if service.session.wait_for_tag(args.timeout) is None:
            logger.info("No card found, falling back to simulation.")

    match args.command:
        case "read":
            return service.read_tag(args.reader)
        case "write":
            return service.write_tag(_parse_payload(args.payload), args.reader)
        case "format":
            return service.format_tag(args.reader)

def _main(argv: list[str] | None = None) -> int:
    args = _get_args(argv)
    settings = NfcSettings.from_env()
    if args.simulate:
        settings = replace(settings, force_simulation=True)
    configure_logging("DEBUG" if args.verbose else settings.log_level)

    with NfcService(settings) as service:
        result = _run(service, args)

    if isinstance(result, OperationResult):
        print(json.dumps(result.as_dict(), ensure_ascii=False, indent=2))
        return 0 if result.success else 1
    print(json.dumps(result, ensure_ascii=False, indent=2))
    return 0

if __name__ == "__main__":
    sys.exit(_main())
