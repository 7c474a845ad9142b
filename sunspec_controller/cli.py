"""
SunSpec CLI - Discover, read and write SunSpec devices

Usage:
    # Scan a subnet for devices
    sunspec-cli discover --range 192.168.1.0/24 --unit-ids 1-10

    # Full model map of a unit
    sunspec-cli models --host 192.168.1.10 --unit-id 1

    # Read points
    sunspec-cli read --host 192.168.1.10 --model 103 --point W --point Hz

    # Write a point
    sunspec-cli write --host 192.168.1.10 --model 123 --point WMaxLimPct --value 50 --verify

    # Poll a point with failure backoff
    sunspec-cli poll --host 192.168.1.10 --model 103 --point W --interval 5 --count 10

    # Download official model definitions, then use them
    sunspec-cli update-models --output models.json
    sunspec-cli --models models.json read --host 192.168.1.10 --model 126 --point ActCrv

Output is JSON for easy parsing by callers.
"""

import argparse
import asyncio
import json
import sys
import traceback
from dataclasses import replace

from sunspec_controller.common import constants
from sunspec_controller.common.config import EngineSettings, load_config_file
from sunspec_controller.common.exceptions import SunSpecError
from sunspec_controller.common.logging_setup import configure_logging
from sunspec_controller.common.models import normalize_model_id
from sunspec_controller.services.catalog import ModelCatalogSync
from sunspec_controller.services.device import DeviceService, PointRequest
from sunspec_controller.services.discovery import DiscoveryService
from sunspec_controller.services.polling import RetryScheduler


def build_settings(args: argparse.Namespace) -> EngineSettings:
    settings = load_config_file(args.config) if args.config else EngineSettings()
    if args.cache:
        settings = replace(settings, cache_file=args.cache)
    if args.models:
        settings = replace(settings, model_index_file=args.models)
    return settings


def emit(data: dict) -> None:
    print(json.dumps(data, default=str))


async def run_discover(args: argparse.Namespace, settings: EngineSettings) -> dict:
    async with DeviceService(settings) as devices:
        discovery = DiscoveryService(devices)
        session = await discovery.discover(
            address_spec=args.range,
            port=args.port,
            timeout=args.timeout,
            unit_id_spec=args.unit_ids,
        )
    return {"success": True, **session.to_dict()}


async def run_models(args: argparse.Namespace, settings: EngineSettings) -> dict:
    async with DeviceService(settings) as devices:
        models = await devices.get_device_models(
            args.host, args.port, args.unit_id, args.timeout, refresh=args.refresh
        )
    return {"success": True, "host": args.host, "unit_id": args.unit_id, "models": models}


async def run_read(args: argparse.Namespace, settings: EngineSettings) -> dict:
    model_id = normalize_model_id(args.model)
    async with DeviceService(settings) as devices:
        if len(args.point) == 1:
            value = await devices.read_point(
                args.host, args.port, args.unit_id, model_id, args.point[0], args.timeout
            )
            return {"success": True, "point": args.point[0], "value": value}

        requests = [PointRequest(args.host, args.unit_id, model_id, p) for p in args.point]
        readings = await devices.read_points(requests, args.port, args.timeout)
    return {
        "success": all(r.success for r in readings),
        "readings": [r.to_dict() for r in readings],
    }


async def run_write(args: argparse.Namespace, settings: EngineSettings) -> dict:
    async with DeviceService(settings) as devices:
        result = await devices.write_point(
            args.host,
            args.port,
            args.unit_id,
            normalize_model_id(args.model),
            args.point,
            args.value,
            args.timeout,
            verify=args.verify,
        )
    return {"success": result.success, **result.to_dict()}


async def run_poll(args: argparse.Namespace, settings: EngineSettings) -> dict:
    model_id = normalize_model_id(args.model)
    done = asyncio.Event()
    received = 0

    async with DeviceService(settings) as devices:
        async def read_once():
            return await devices.read_point(
                args.host, args.port, args.unit_id, model_id, args.point, args.timeout
            )

        def on_result(value):
            nonlocal received
            received += 1
            emit({"point": args.point, "value": value})
            if args.count and received >= args.count:
                done.set()

        scheduler = RetryScheduler(
            read_once,
            args.interval or settings.retry.interval_s,
            base_delay=settings.retry.base_delay_s,
            max_delay=settings.retry.max_delay_s,
            name=f"{args.host}/{args.unit_id}/{model_id}.{args.point}",
            on_result=on_result,
        )
        await scheduler.start()
        try:
            await done.wait()
        finally:
            scheduler.stop()

    return {"success": True, "readings": received, **scheduler.get_stats()}


async def run_update_models(args: argparse.Namespace, settings: EngineSettings) -> dict:
    model_ids = args.model_id or constants.OFFICIAL_MODEL_IDS
    async with ModelCatalogSync(base_url=args.base_url) as catalog:
        summary = await catalog.update_index_file(args.output, model_ids)
    return {"success": not summary["failed"], **summary}


def add_device_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--host", required=True, help="Device IP address or hostname")
    parser.add_argument("--port", type=int, default=502, help="Modbus TCP port")
    parser.add_argument("--unit-id", type=int, default=1, help="Modbus unit ID")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="SunSpec over Modbus TCP: discover, read and write devices",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("--config", help="YAML settings file")
    parser.add_argument("--models", help="SunSpec model index JSON (bundled index if omitted)")
    parser.add_argument("--cache", help="Address cache JSON file")
    parser.add_argument("--timeout", type=float, default=None, help="Request timeout in seconds")
    parser.add_argument("--log-level", help="DEBUG, INFO, WARNING or ERROR (overrides SUNSPEC_LOG_LEVEL)")

    subparsers = parser.add_subparsers(dest="command", help="Command to execute")

    discover_parser = subparsers.add_parser("discover", help="Scan for devices")
    discover_parser.add_argument("--range", required=True, help="Addresses, e.g. 192.168.1.0/24")
    discover_parser.add_argument("--port", type=int, default=None, help="Modbus TCP port")
    discover_parser.add_argument("--unit-ids", default="", help="Unit IDs, e.g. 1-10,126")

    models_parser = subparsers.add_parser("models", help="List models of a device")
    add_device_arguments(models_parser)
    models_parser.add_argument("--refresh", action="store_true", help="Ignore cached model map")

    read_parser = subparsers.add_parser("read", help="Read points")
    add_device_arguments(read_parser)
    read_parser.add_argument("--model", required=True, help="Model ID (e.g. 103)")
    read_parser.add_argument("--point", required=True, action="append", help="Point name, repeatable")

    write_parser = subparsers.add_parser("write", help="Write a point")
    add_device_arguments(write_parser)
    write_parser.add_argument("--model", required=True, help="Model ID")
    write_parser.add_argument("--point", required=True, help="Point name")
    write_parser.add_argument("--value", type=float, required=True, help="Value to write")
    write_parser.add_argument("--verify", action="store_true", help="Read back after writing")

    poll_parser = subparsers.add_parser("poll", help="Read a point periodically")
    add_device_arguments(poll_parser)
    poll_parser.add_argument("--model", required=True, help="Model ID")
    poll_parser.add_argument("--point", required=True, help="Point name")
    poll_parser.add_argument("--interval", type=float, default=None, help="Seconds between reads")
    poll_parser.add_argument("--count", type=int, default=0, help="Stop after N readings (0 = forever)")

    update_parser = subparsers.add_parser("update-models", help="Download official SunSpec models")
    update_parser.add_argument("--output", required=True, help="Model index JSON to write")
    update_parser.add_argument(
        "--model-id", type=int, action="append", help="Model to download, repeatable (default: official set)"
    )
    update_parser.add_argument("--base-url", default=constants.SUNSPEC_MODELS_URL, help="Model JSON location")

    return parser


COMMANDS = {
    "discover": run_discover,
    "models": run_models,
    "read": run_read,
    "write": run_write,
    "poll": run_poll,
    "update-models": run_update_models,
}


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return 1

    try:
        if args.log_level:
            configure_logging(args.log_level)
        settings = build_settings(args)
        result = asyncio.run(COMMANDS[args.command](args, settings))
    except SunSpecError as e:
        emit({"success": False, "error": str(e), "error_type": type(e).__name__})
        return 1
    except KeyboardInterrupt:
        emit({"success": False, "error": "Interrupted"})
        return 130
    except Exception as e:
        emit({"success": False, "error": str(e), "traceback": traceback.format_exc()})
        return 1

    emit(result)
    return 0 if result.get("success") else 1


if __name__ == "__main__":
    sys.exit(main())
