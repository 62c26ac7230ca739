#!/usr/bin/env python3
"""
Modbus TCP Command Line

One-shot reads and writes against a device.

Usage:
    python -m modbus_tcp HOST [--port 502] [--unit 0] COMMAND ARGS...

Commands:
    read-coils ADDRESS QUANTITY
    read-discrete-inputs ADDRESS QUANTITY
    read-holding-registers ADDRESS QUANTITY
    read-input-registers ADDRESS QUANTITY
    write-coil ADDRESS on|off
    write-register ADDRESS VALUE
    write-coils ADDRESS BIT [BIT ...]
    write-registers ADDRESS VALUE [VALUE ...]
"""

import argparse
import asyncio
import logging
import sys
from typing import List, Optional

from modbus_tcp.client import ModbusTcpClient
from modbus_tcp.config import LOGGING_CONFIG, MODBUS_CONFIG
from modbus_tcp.exceptions import ModbusTcpClientError
from modbus_tcp.numeric import get_ushort, set_ushort


def _bit(text: str) -> bool:
    value = text.lower()
    if value in ("1", "on", "true"):
        return True
    if value in ("0", "off", "false"):
        return False
    raise argparse.ArgumentTypeError(f"invalid coil state: {text!r}")


def _uint16(text: str) -> int:
    value = int(text, 0)
    if not 0 <= value <= 0xFFFF:
        raise argparse.ArgumentTypeError(f"register value out of range: {text!r}")
    return value


def _timeout(text: str) -> float:
    value = float(text)
    if not value > 0:
        raise argparse.ArgumentTypeError(f"timeout must be greater than zero: {text!r}")
    return value


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="modbus_tcp", description="Modbus TCP client")
    parser.add_argument("host", help="Device IP address or hostname")
    parser.add_argument("--port", type=int, default=MODBUS_CONFIG["port"], help="TCP port (default: 502)")
    parser.add_argument("--unit", type=int, default=MODBUS_CONFIG["unit_id"], help="Unit identifier (default: 0)")
    parser.add_argument("--timeout", type=_timeout, default=MODBUS_CONFIG["timeout_s"], help="Timeout in seconds")
    parser.add_argument("--log-level", default=LOGGING_CONFIG["level"], help="Logging level")

    commands = parser.add_subparsers(dest="command", required=True)

    for name in ("read-coils", "read-discrete-inputs", "read-holding-registers", "read-input-registers"):
        read = commands.add_parser(name)
        read.add_argument("address", type=int)
        read.add_argument("quantity", type=int)

    write_coil = commands.add_parser("write-coil")
    write_coil.add_argument("address", type=int)
    write_coil.add_argument("value", type=_bit)

    write_register = commands.add_parser("write-register")
    write_register.add_argument("address", type=int)
    write_register.add_argument("value", type=_uint16)

    write_coils = commands.add_parser("write-coils")
    write_coils.add_argument("address", type=int)
    write_coils.add_argument("values", type=_bit, nargs="+")

    write_registers = commands.add_parser("write-registers")
    write_registers.add_argument("address", type=int)
    write_registers.add_argument("values", type=_uint16, nargs="+")

    return parser


def _register_bytes(values: List[int]) -> bytearray:
    data = bytearray(len(values) * 2)
    for i, value in enumerate(values):
        set_ushort(data, i * 2, value)
    return data


async def run(args: argparse.Namespace, client: ModbusTcpClient) -> List[str]:
    """Execute one command and return the lines to print."""
    async with client:
        if args.command in ("read-coils", "read-discrete-inputs"):
            if args.command == "read-coils":
                bits = await client.read_coils(args.address, args.quantity)
            else:
                bits = await client.read_discrete_inputs(args.address, args.quantity)
            return [f"{args.address + i}: {int(bit)}" for i, bit in enumerate(bits)]

        if args.command in ("read-holding-registers", "read-input-registers"):
            if args.command == "read-holding-registers":
                data = await client.read_holding_registers(args.address, args.quantity)
            else:
                data = await client.read_input_registers(args.address, args.quantity)
            return [
                f"{args.address + i}: {get_ushort(data, i * 2)} (0x{get_ushort(data, i * 2):04X})"
                for i in range(args.quantity)
            ]

        if args.command == "write-coil":
            await client.write_single_coil(args.address, args.value)
        elif args.command == "write-register":
            # FC06 swaps the two bytes it is given, so hand them over low byte first
            value = args.value
            await client.write_single_register(args.address, bytes([value & 0xFF, value >> 8]))
        elif args.command == "write-coils":
            await client.write_multiple_coils(args.address, args.values)
        elif args.command == "write-registers":
            await client.write_multiple_registers(args.address, bytes(_register_bytes(args.values)))

        return ["OK"]


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)

    logging.basicConfig(
        level=getattr(logging, str(args.log_level).upper(), logging.INFO),
        format=LOGGING_CONFIG["format"],
    )

    client = ModbusTcpClient(args.host, port=args.port, unit_identifier=args.unit, timeout_s=args.timeout)
    try:
        lines = asyncio.run(run(args, client))
    except ModbusTcpClientError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    for line in lines:
        print(line)
    return 0


if __name__ == "__main__":
    sys.exit(main())
