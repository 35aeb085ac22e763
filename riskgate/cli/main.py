"""riskgate CLI entrypoint.

Subcommands:
  serve     Hydrate, then read events as JSON lines on stdin and write decisions as
            JSON lines on stdout until EOF or a market-close stop.
  snapshot  Hydrate and print the portfolio metrics as JSON.

Configuration layers: defaults <- --config FILE (JSON) <- RISKGATE_* env <- --set KEY=VALUE.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import subprocess
import sys
import threading
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, BinaryIO, Optional

import orjson

from riskgate.adapters.alpaca import AlpacaAccountSource
from riskgate.adapters.env_provider import EnvSecretsProvider
from riskgate.adapters.price_http import HttpPriceSource
from riskgate.adapters.static import StaticAccountSource, StaticPriceSource, UnsupportedPriceSource
from riskgate.adapters.telemetry.jsonl import JsonlTelemetry
from riskgate.config.config_loader import ConfigLoader
from riskgate.config.configs import Config, RunContext, SubscriptionConfig
from riskgate.core.bus import BackpressurePolicy, Bus, Subscription
from riskgate.core.clock import Clock, RealtimeClock
from riskgate.core.codec import encode_decision, parse_input
from riskgate.core.risk_manager import RiskManager
from riskgate.core.service import RiskService, ServiceStats
from riskgate.errors.errors import ConfigurationError, InputError, RiskGateError
from riskgate.logging_setup import configure_logging
from riskgate.ports.account_source import AccountSource
from riskgate.ports.price_source import PriceSource
from riskgate.ports.secrets_provider import SecretsProvider
from riskgate.ports.telemetry import Telemetry
from riskgate.types.topics import T_LOG, T_LOTS, T_MARKET_STATUS, T_RISK_REQUEST, T_RISK_RESPONSE
from riskgate.types.types import AccountInfo, LogEvent, Lot, MarketStatus, TradeIntent
from riskgate.utils.utility import make_serializable

_LOGGER = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_CONFIG = 2

_LEVELS = {"DEBUG": logging.DEBUG, "INFO": logging.INFO, "WARN": logging.WARNING}


def build_parser() -> argparse.ArgumentParser:
    """
    Return the top-level CLI argument parser.
    """
    p = argparse.ArgumentParser(prog="riskgate")
    sub = p.add_subparsers(dest="command", required=True)

    def add_common(sp: argparse.ArgumentParser) -> None:
        """Add arguments shared across all subcommands."""
        sp.add_argument("--config", type=Path, required=False, help="Path to a JSON config file")
        sp.add_argument(
            "--set",
            dest="config_overrides",
            action="append",
            default=[],
            metavar="KEY=VALUE",
            help="Override a config entry (may be repeated)",
        )

    serve = sub.add_parser("serve", help="Run the risk service over stdin/stdout JSON lines")
    add_common(serve)

    snapshot = sub.add_parser("snapshot", help="Hydrate and print portfolio metrics")
    add_common(snapshot)
    return p


def _resolve_git_sha() -> str:
    try:
        result = subprocess.run(
            ["git", "rev-parse", "HEAD"], check=True, capture_output=True, text=True
        )
    except (OSError, subprocess.CalledProcessError):
        return "unknown"
    return result.stdout.strip()


# --- wiring ---


def build_account_source(cfg: Config, secrets: Optional[SecretsProvider] = None) -> AccountSource:
    if cfg.account.kind == "static":
        return StaticAccountSource(
            AccountInfo(
                cash=cfg.account.cash,
                pattern_day_trader=cfg.account.pattern_day_trader,
                last_equity=cfg.account.last_equity,
                last_maintenance_margin=cfg.account.last_maintenance_margin,
            )
        )
    provider = secrets or EnvSecretsProvider()
    key_id = cfg.alpaca.key_id or _optional_secret(provider, "key_id")
    secret_key = cfg.alpaca.secret_key or _optional_secret(provider, "secret_key")
    return AlpacaAccountSource(cfg.alpaca, key_id=key_id, secret_key=secret_key)


def _optional_secret(provider: SecretsProvider, name: str) -> Optional[str]:
    try:
        return provider.get(name)
    except ValueError:
        return None


def build_price_source(cfg: Config) -> PriceSource:
    kind = cfg.price_source.kind
    if kind == "http":
        return HttpPriceSource(cfg.price_source)
    if kind == "static":
        return StaticPriceSource(cfg.price_source.static_prices)
    return UnsupportedPriceSource()


# --- serve ---


def _topic_for(event: Any) -> str:
    if isinstance(event, Lot):
        return T_LOTS
    if isinstance(event, TradeIntent):
        return T_RISK_REQUEST
    if isinstance(event, MarketStatus):
        return T_MARKET_STATUS
    raise TypeError(f"No topic for {type(event).__name__}")


class _LineReader:
    """Reads lines on a daemon thread so a blocked read never holds up shutdown."""

    def __init__(self, in_stream: BinaryIO) -> None:
        self._in = in_stream
        self._lines: asyncio.Queue[bytes] = asyncio.Queue()
        self._loop: Optional[asyncio.AbstractEventLoop] = None

    def start(self) -> None:
        self._loop = asyncio.get_running_loop()
        threading.Thread(target=self._run, name="riskgate-stdin", daemon=True).start()

    def _run(self) -> None:
        while True:
            try:
                line = self._in.readline()
            except (OSError, ValueError) as exc:
                _LOGGER.warning(
                    "input_read_failed", extra={"event": "input_read_failed", "error": str(exc)}
                )
                line = b""
            try:
                self._loop.call_soon_threadsafe(self._lines.put_nowait, line)
            except RuntimeError:
                return  # loop already closed
            if not line:
                return

    async def readline(self) -> bytes:
        return await self._lines.get()


async def _pump_lines(
    bus: Bus, clock: Clock, in_stream: BinaryIO, service_task: asyncio.Task[None]
) -> int:
    """Read JSON lines and publish them until EOF or the service stops. Returns rejected count."""
    reader = _LineReader(in_stream)
    reader.start()
    rejected = 0
    while True:
        read_task = asyncio.ensure_future(reader.readline())
        await asyncio.wait({read_task, service_task}, return_when=asyncio.FIRST_COMPLETED)
        if service_task.done():
            read_task.cancel()
            break
        line = read_task.result()
        if not line:
            break
        line = line.strip()
        if not line:
            continue
        try:
            event = parse_input(line)
        except InputError as exc:
            rejected += 1
            _LOGGER.warning(
                "input_line_rejected", extra={"event": "input_line_rejected", "error": str(exc)}
            )
            continue
        if not bus.is_running:
            break
        await bus.publish(_topic_for(event), ts_utc=clock.now(), payload=event)
    return rejected


async def _write_decisions(sub: Subscription, out_stream: BinaryIO) -> None:
    while True:
        async with sub.consume() as env:
            if env is None:
                return
            out_stream.write(encode_decision(env.payload) + b"\n")
            out_stream.flush()


async def _forward_logs(sub: Subscription) -> None:
    while True:
        async with sub.consume() as env:
            if env is None:
                return
            event: LogEvent = env.payload
            _LOGGER.log(
                _LEVELS.get(event.level, logging.ERROR),
                event.msg,
                extra={"event": event.msg, "component": event.component, "payload": event.payload},
            )


async def serve(
    cfg: Config,
    risk_manager: RiskManager,
    in_stream: BinaryIO,
    out_stream: BinaryIO,
    clock: Optional[Clock] = None,
) -> ServiceStats:
    clock = clock or RealtimeClock()
    bus = Bus(cfg.bus, clock)
    service = RiskService(bus, risk_manager, clock, cfg.service)
    await service.start()

    writer_sub = await bus.subscribe("stdout_writer", SubscriptionConfig(topics={T_RISK_RESPONSE}))
    log_sub = await bus.subscribe(
        "log_forwarder", SubscriptionConfig(topics={T_LOG}), BackpressurePolicy.DROP_NEWEST
    )
    service_task = asyncio.create_task(service.run())
    writer_task = asyncio.create_task(_write_decisions(writer_sub, out_stream))
    log_task = asyncio.create_task(_forward_logs(log_sub))

    rejected = await _pump_lines(bus, clock, in_stream, service_task)
    if rejected:
        service.stats.input_errors += rejected

    if not service_task.done():
        await bus.wait_until_idle(timeout=None)
    await bus.close(reason="input_eof" if not service_task.done() else service.stop_reason)
    await asyncio.gather(service_task, writer_task, log_task)
    return service.stats


# --- commands ---


def _load_config(args: argparse.Namespace, telemetry: Optional[Telemetry]) -> Config:
    loader = ConfigLoader(telemetry)
    cfg, rendered = loader.load(config_file=args.config, cli_pairs=args.config_overrides)
    _LOGGER.info(
        "config_resolved",
        extra={
            "event": "config_resolved",
            "config_hash": rendered.config_hash,
            "config": rendered.redacted_config,
        },
    )
    return cfg


def _make_telemetry(cfg: Config, run_ctx: RunContext) -> Optional[Telemetry]:
    if cfg.logging.telemetry_path is None:
        return None
    return JsonlTelemetry(
        run_id=run_ctx.run_id, git_sha=run_ctx.git_sha, sink_path=cfg.logging.telemetry_path
    )


def run_snapshot(cfg: Config, out_stream: BinaryIO) -> int:
    rm = RiskManager(build_account_source(cfg), build_price_source(cfg), cfg.risk)
    rm.initialize()
    payload = make_serializable(rm.metrics())
    out_stream.write(orjson.dumps(payload, option=orjson.OPT_INDENT_2) + b"\n")
    out_stream.flush()
    return EXIT_OK


def run_serve(cfg: Config, in_stream: BinaryIO, out_stream: BinaryIO) -> ServiceStats:
    rm = RiskManager(build_account_source(cfg), build_price_source(cfg), cfg.risk)
    return asyncio.run(serve(cfg, rm, in_stream, out_stream))


def main(argv: Optional[list[str]] = None) -> int:
    args = build_parser().parse_args(argv)

    try:
        cfg = _load_config(args, telemetry=None)
    except ConfigurationError as exc:
        print(f"[!] {exc}", file=sys.stderr)
        return EXIT_CONFIG

    configure_logging(cfg.logging.level, json_lines=cfg.logging.json_lines)
    run_ctx = RunContext(
        run_id=str(uuid.uuid4()),
        git_sha=_resolve_git_sha(),
        started_at=datetime.now(timezone.utc).isoformat(),
    )
    telemetry = _make_telemetry(cfg, run_ctx)
    if telemetry is not None:
        # re-resolve so the rendered config lands in the telemetry sink
        cfg = _load_config(args, telemetry)
        telemetry.log("run_started", command=args.command, started_at=run_ctx.started_at)

    try:
        if args.command == "snapshot":
            code = run_snapshot(cfg, sys.stdout.buffer)
        else:
            stats = run_serve(cfg, sys.stdin.buffer, sys.stdout.buffer)
            if telemetry is not None:
                telemetry.log("run_stats", stats=stats)
            code = EXIT_OK
    except KeyboardInterrupt:
        print("Interrupted by user.", file=sys.stderr)
        return 130
    except RiskGateError as exc:
        _LOGGER.error("run_failed", extra={"event": "run_failed", "error": str(exc)})
        print(f"[!] {exc}", file=sys.stderr)
        code = EXIT_FAILURE

    if telemetry is not None:
        telemetry.log("run_finished", command=args.command, exit_code=code)
    return code


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
