"""CLI entrypoint for the phone sensing agent."""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path

from phone_sensing.common.config_loader import SensingConfig, SinkConfig, load_config
from phone_sensing.common.constants import COMMANDS, EXIT_HARD_FAIL, EXIT_PARTIAL, EXIT_SUCCESS
from phone_sensing.common.errors import ConfigError, SensingError
from phone_sensing.common.http import HttpClient, RetryConfig, TimeoutConfig
from phone_sensing.common.ids import generate_run_id
from phone_sensing.common.logging import build_logger, log_event
from phone_sensing.common.models import SubsystemStatus
from phone_sensing.location.engine import LocationEngine
from phone_sensing.location.providers import ReplayPositioningProvider
from phone_sensing.sink.http_sink import HttpSink
from phone_sensing.sink.sinks import JsonLinesSink, MeasurementSink, TopicCache
from phone_sensing.state.store import JsonFileStore
from phone_sensing.telephony.extractor import LogExtractor
from phone_sensing.telephony.log_provider import SqliteLogProvider


def parse_args(argv: list[str]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument("command", choices=COMMANDS)
    parser.add_argument("--config", default="./config/phone.yml")
    parser.add_argument("--overlay-config", default=None)
    parser.add_argument("--data-dir", default="./data")
    parser.add_argument("--run-id", default=None)
    parser.add_argument("--log-level", default="INFO", choices=["DEBUG", "INFO", "WARN", "ERROR"])
    parser.add_argument("--sink-url", default=None)
    parser.add_argument("--calls-db", default=None)
    parser.add_argument("--sms-db", default=None)
    parser.add_argument("--fixes", default=None)
    parser.add_argument("--battery-level", type=float, default=None)
    parser.add_argument("--charging", action="store_true")
    return parser.parse_args(argv)


def build_sink(sink_config: SinkConfig, data_dir: Path, sink_url: str | None = None) -> MeasurementSink:
    if sink_url:
        sink_config = SinkConfig(
            kind="http",
            url=sink_url,
            max_attempts=sink_config.max_attempts,
            timeout_seconds=sink_config.timeout_seconds,
        )
    if sink_config.kind == "http":
        if not sink_config.url:
            raise ConfigError("sink.url is required for the http sink")
        client = HttpClient(
            timeout=TimeoutConfig(read=sink_config.timeout_seconds),
            retry=RetryConfig(max_attempts=sink_config.max_attempts),
        )
        return HttpSink(sink_config.url, client)
    if sink_config.kind == "memory":
        return TopicCache()
    return JsonLinesSink(data_dir / "out")


def run_extract_logs(args: argparse.Namespace, config: SensingConfig, store, sink, logger, run_id: str) -> int:
    provider = SqliteLogProvider(
        calls_db=Path(args.calls_db) if args.calls_db else None,
        sms_db=Path(args.sms_db) if args.sms_db else None,
    )
    extractor = LogExtractor(provider, store, sink, config.source, config.telephony)
    try:
        future = extractor.on_trigger()
        counts = future.result() if future is not None else {}
    finally:
        extractor.stop()
        provider.close()

    log_event(
        logger,
        f"log extraction finished: {counts}",
        run_id=run_id,
        subsystem="telephony",
        event="RUN_END",
        status="partial" if extractor.failed_streams else "ok",
        rows_out=sum(counts.values()),
    )
    return EXIT_PARTIAL if extractor.failed_streams else EXIT_SUCCESS


def run_replay_locations(args: argparse.Namespace, config: SensingConfig, store, sink, logger, run_id: str) -> int:
    if not args.fixes:
        raise ConfigError("replay-locations needs --fixes")
    provider = ReplayPositioningProvider.from_csv(Path(args.fixes))
    engine = LocationEngine(provider, store, sink, config.source, config.location)
    try:
        engine.start().result()
        if args.battery_level is not None:
            engine.on_battery_change(args.battery_level, args.charging).result()
        delivered = provider.replay()
    finally:
        # queued fixes are processed before the engine shuts down
        engine.stop()

    degraded = engine.status is SubsystemStatus.DEGRADED
    log_event(
        logger,
        f"location replay finished at sampling frequency {engine.frequency.value}",
        run_id=run_id,
        subsystem="location",
        event="RUN_END",
        status="partial" if degraded else "ok",
        rows_out=delivered,
    )
    return EXIT_PARTIAL if degraded else EXIT_SUCCESS


def run_command(args: argparse.Namespace) -> int:
    run_id = args.run_id or generate_run_id(args.command)
    data_dir = Path(args.data_dir)
    overlay_path = Path(args.overlay_config) if args.overlay_config else None

    logger = build_logger(run_id, data_dir=data_dir, level=args.log_level)
    log_event(logger, "run start", run_id=run_id, event="RUN_START", status="ok")
    try:
        config = load_config(Path(args.config), overlay_path=overlay_path)
        store = JsonFileStore(data_dir / "state" / "phone_sensing.json")
        sink = build_sink(config.sink, data_dir, args.sink_url)
        try:
            if args.command == "extract-logs":
                return run_extract_logs(args, config, store, sink, logger, run_id)
            return run_replay_locations(args, config, store, sink, logger, run_id)
        finally:
            if isinstance(sink, HttpSink):
                sink.close()
    except SensingError as exc:
        log_event(
            logger,
            f"run failed: {exc}",
            level=logging.ERROR,
            run_id=run_id,
            event="RUN_FAIL",
            status="error",
            error_code=exc.error_code,
        )
        return EXIT_HARD_FAIL


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv or sys.argv[1:])
    try:
        return run_command(args)
    except SensingError:
        return EXIT_HARD_FAIL
    except Exception:
        logging.getLogger("phone_sensing").exception("unexpected failure")
        return EXIT_HARD_FAIL


if __name__ == "__main__":
    raise SystemExit(main())
