"""
Bus Tracker poller
Polls one endpoint through a shared client and logs every envelope
"""

import argparse
import asyncio

from loguru import logger

from bustracker.services import BusTrackerClient, get_endpoint

DEFAULT_INTERVAL = 15.0


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Poll a Bus Tracker endpoint.")
    parser.add_argument("endpoint", help="Endpoint name, e.g. getpredictions")
    parser.add_argument(
        "params",
        nargs="*",
        metavar="key=value",
        help="Query parameters for the endpoint",
    )
    parser.add_argument(
        "--interval",
        type=float,
        default=None,
        help="Seconds between polls (defaults to the endpoint cache TTL)",
    )
    parser.add_argument("--once", action="store_true", help="Poll a single time")
    return parser.parse_args(argv)


def parse_params(pairs: list[str]) -> dict[str, str]:
    params: dict[str, str] = {}
    for pair in pairs:
        key, sep, value = pair.partition("=")
        if not sep or not key:
            raise ValueError(f"Expected key=value, got {pair!r}")
        params[key] = value
    return params


def poll_interval(endpoint: str, override: float | None) -> float:
    if override is not None:
        return override
    spec = get_endpoint(endpoint)
    if spec and spec.cache_ttl.total_seconds() > 0:
        return spec.cache_ttl.total_seconds()
    return DEFAULT_INTERVAL


async def poll(
    client: BusTrackerClient,
    endpoint: str,
    params: dict[str, str],
    interval: float,
    once: bool = False,
) -> None:
    """Fetch the endpoint repeatedly, logging each envelope as JSON."""
    while True:
        envelope = await client.get(endpoint, params)
        if envelope.ok:
            logger.info(envelope.model_dump_json())
        else:
            logger.error(envelope.model_dump_json())

        if once:
            return
        await asyncio.sleep(interval)


async def main(argv: list[str] | None = None) -> None:
    """Poller entry point"""
    args = parse_args(argv)
    params = parse_params(args.params)
    interval = poll_interval(args.endpoint, args.interval)

    logger.info(f"Polling {args.endpoint} every {interval}s...")

    async with BusTrackerClient() as client:
        try:
            await poll(client, args.endpoint, params, interval, once=args.once)
        finally:
            logger.info(f"Client stats: {client.get_health_status()}")

    logger.info("Poller stopped")


def run() -> None:
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        logger.info("Received interrupt signal, poller stopped")


if __name__ == "__main__":
    run()
