"""Incremental, watermark-based extraction of call and SMS logs."""

from __future__ import annotations

import logging
import threading
from concurrent.futures import Future
from typing import Callable, Sequence

from phone_sensing.common.config_loader import TelephonyConfig
from phone_sensing.common.constants import (
    STREAM_CALLS,
    STREAM_SMS,
    TOPIC_CALL,
    TOPIC_SMS,
    TOPIC_SMS_UNREAD,
    WATERMARK_KEY_BY_STREAM,
)
from phone_sensing.common.errors import PersistenceError
from phone_sensing.common.logging import get_logger, log_event
from phone_sensing.common.models import (
    Measurement,
    ObservationKey,
    PhoneCall,
    PhoneCallType,
    PhoneSms,
    PhoneSmsType,
    PhoneSmsUnread,
    SubsystemStatus,
)
from phone_sensing.common.time_utils import Clock, current_time, current_time_ms
from phone_sensing.common.worker import RepeatingTimer, SerialWorker, log_failure
from phone_sensing.sink.sinks import MeasurementSink
from phone_sensing.state.store import KeyValueStore, persist_with_retry
from phone_sensing.telephony.anonymizer import HashGenerator, anonymize_target
from phone_sensing.telephony.log_provider import LogProvider, Row
from phone_sensing.telephony.types import call_type, sms_type

logger = get_logger("telephony")

SUBSYSTEM = "telephony"
RECORD_ERRORS = (KeyError, TypeError, ValueError, AttributeError)


def _event_time(row: Row) -> int | None:
    try:
        value = row["date"]
        if value is None or isinstance(value, bool):
            return None
        return int(value)
    except RECORD_ERRORS:
        return None


def _text(value: object) -> str | None:
    if value is None:
        return None
    return str(value)


def _optional_float(value: object) -> float | None:
    if value is None:
        return None
    try:
        return float(value)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        return None


def _sms_length(row: Row) -> int | None:
    length = row.get("body_length")
    if length is not None:
        return int(length)
    body = row.get("body")
    if body is None:
        return None
    return len(body)


class LogExtractor:
    """Pulls new call and SMS records since the last watermark on a periodic trigger.

    Each stream keeps its own watermark, the event time of the newest record
    emitted so far. Queries use a strict ``>`` on that watermark, so the
    boundary record is never emitted twice. The watermark is only written when
    it advanced.
    """

    def __init__(
        self,
        log_provider: LogProvider,
        store: KeyValueStore,
        sink: MeasurementSink,
        key: ObservationKey,
        config: TelephonyConfig | None = None,
        *,
        hash_generator: HashGenerator | None = None,
        clock: Clock = current_time,
    ) -> None:
        self.log_provider = log_provider
        self.store = store
        self.sink = sink
        self.key = key
        self.config = config or TelephonyConfig()
        self.hash_generator = hash_generator or HashGenerator(store)
        self.status = SubsystemStatus.READY
        self.worker = SerialWorker("phone-log")
        self._clock = clock
        self._timer: RepeatingTimer | None = None
        self._timer_lock = threading.Lock()
        self._done = threading.Event()
        self.failed_streams: set[str] = set()

    @property
    def is_done(self) -> bool:
        return self._done.is_set()

    def start(self) -> None:
        self.set_poll_interval(self.config.log_interval)
        self.status = SubsystemStatus.CONNECTED

    def set_poll_interval(self, period: float) -> None:
        """Replace any active trigger with one firing now and every ``period`` seconds."""
        with self._timer_lock:
            if self._timer is not None:
                self._timer.cancel()
                self._timer = None
            if self.is_done:
                return
            self._timer = RepeatingTimer(period, self.on_trigger, name="phone-log-trigger").start()
        log_event(
            logger,
            f"call and sms log listener activated and set to a period of {period}",
            subsystem=SUBSYSTEM,
            event="TRIGGER_INSTALLED",
            status="ok",
        )

    def on_trigger(self) -> Future | None:
        future = self.worker.submit(self.process_all)
        if future is not None:
            future.add_done_callback(log_failure)
        return future

    def stop(self) -> None:
        """Cancel the trigger, interrupt running scans between records and release the worker."""
        with self._timer_lock:
            self._done.set()
            if self._timer is not None:
                self._timer.cancel()
                self._timer = None
        self.worker.shutdown()
        self.status = SubsystemStatus.DISCONNECTED

    # -- processing, runs on the worker

    def process_all(self) -> dict[str, int]:
        return {
            STREAM_CALLS: self.process_calls(),
            STREAM_SMS: self.process_sms(),
            "sms_unread": self.process_unread_count(),
        }

    def process_calls(self) -> int:
        return self._process_stream(STREAM_CALLS, TOPIC_CALL, self._call_measurement)

    def process_sms(self) -> int:
        return self._process_stream(STREAM_SMS, TOPIC_SMS, self._sms_measurement)

    def process_unread_count(self) -> int:
        """Emit one snapshot of the unread SMS count. Returns the number of records emitted."""
        try:
            unread = int(self.log_provider.count_unread(STREAM_SMS))
        except PermissionError:
            self._degrade(STREAM_SMS)
            return 0
        except Exception as exc:
            self._log_systemic(STREAM_SMS, exc)
            return 0

        now = self._clock()
        try:
            self.sink.append(TOPIC_SMS_UNREAD, self.key, PhoneSmsUnread(now, now, unread))
        except Exception as exc:
            self._log_systemic(STREAM_SMS, exc)
            return 0
        logger.debug("SMS unread: %s %s", now, unread)
        return 1

    def read_watermark(self, stream: str) -> int | None:
        raw = self.store.get(WATERMARK_KEY_BY_STREAM[stream])
        if raw is None:
            return None
        try:
            return int(raw)
        except ValueError:
            log_event(
                logger,
                f"stored {stream} watermark {raw!r} unreadable, using lookback window",
                level=logging.ERROR,
                subsystem=SUBSYSTEM,
                stream=stream,
                event="WATERMARK_INVALID",
                status="error",
            )
            return None

    def _default_watermark(self) -> int:
        return current_time_ms(self._clock) - self.config.log_history * 1000

    def _process_stream(
        self,
        stream: str,
        topic: str,
        build: Callable[[Row, int], Measurement],
    ) -> int:
        persisted = self.read_watermark(stream)
        initial = persisted if persisted is not None else self._default_watermark()
        max_seen = initial
        emitted = 0
        page_size = self.config.query_page_size

        try:
            while not self.is_done:
                query_since = max_seen
                rows = self.log_provider.query(stream, query_since, True, page_size)
                held_back = self._held_back_time(stream, rows, query_since, page_size)
                for row in rows:
                    if self.is_done:
                        break
                    event_time = _event_time(row)
                    if event_time is None:
                        log_event(
                            logger,
                            f"{stream} record without event time skipped",
                            level=logging.WARNING,
                            subsystem=SUBSYSTEM,
                            stream=stream,
                            event="RECORD_INVALID",
                            status="skipped",
                        )
                        continue
                    if event_time <= query_since:
                        continue
                    if held_back is not None and event_time >= held_back:
                        continue
                    self.sink.append(topic, self.key, build(row, event_time))
                    emitted += 1
                    max_seen = max(max_seen, event_time)
                # a full page that did not move the watermark would be served again
                if len(rows) < page_size or max_seen == query_since:
                    break
        except PermissionError:
            self._degrade(stream)
        except Exception as exc:
            self._log_systemic(stream, exc)

        if max_seen != initial:
            self._persist_watermark(stream, max_seen)

        log_event(
            logger,
            f"{stream} log processed",
            subsystem=SUBSYSTEM,
            stream=stream,
            event="SCAN_END",
            status="ok",
            rows_out=emitted,
        )
        return emitted

    def _held_back_time(self, stream: str, rows: Sequence[Row], query_since: int, page_size: int) -> int | None:
        """Event time whose rows wait for the next page, or None to take the whole page.

        The next page starts strictly after the newest emitted time, so rows
        sharing the last time of a full page are left for that next query.
        """
        if len(rows) < page_size:
            return None
        times = [t for t in map(_event_time, rows) if t is not None and t > query_since]
        if not times:
            return None
        last = max(times)
        if any(t < last for t in times):
            return last
        log_event(
            logger,
            f"{stream} page holds only records at {last}; further records with that time are skipped",
            level=logging.WARNING,
            subsystem=SUBSYSTEM,
            stream=stream,
            event="PAGE_SATURATED",
            status="partial",
        )
        return None

    def _persist_watermark(self, stream: str, value: int) -> None:
        try:
            persist_with_retry(self.store, {WATERMARK_KEY_BY_STREAM[stream]: str(value)})
        except PersistenceError as exc:
            log_event(
                logger,
                f"{stream} watermark kept in memory only: {exc}",
                level=logging.ERROR,
                subsystem=SUBSYSTEM,
                stream=stream,
                event="WATERMARK_PERSIST",
                status="error",
                error_code=exc.error_code,
            )

    def _degrade(self, stream: str) -> None:
        self.status = SubsystemStatus.DEGRADED
        self.failed_streams.add(stream)
        log_event(
            logger,
            f"access to the {stream} log denied",
            level=logging.WARNING,
            subsystem=SUBSYSTEM,
            stream=stream,
            event="PERMISSION_DENIED",
            status="degraded",
        )

    def _log_systemic(self, stream: str, exc: Exception) -> None:
        self.failed_streams.add(stream)
        log_event(
            logger,
            f"error in processing the {stream} log: {exc!r}",
            level=logging.ERROR,
            subsystem=SUBSYSTEM,
            stream=stream,
            event="SCAN_FAIL",
            status="error",
            error_code=getattr(exc, "error_code", None),
        )

    def _log_malformed(self, stream: str, exc: Exception) -> None:
        log_event(
            logger,
            f"malformed {stream} record emitted with unknown fields: {exc!r}",
            level=logging.WARNING,
            subsystem=SUBSYSTEM,
            stream=stream,
            event="RECORD_MALFORMED",
            status="partial",
        )

    def _call_measurement(self, row: Row, event_time: int) -> PhoneCall:
        time = event_time / 1000.0
        now = self._clock()
        try:
            target = anonymize_target(_text(row.get("number")), self.hash_generator)
            measurement = PhoneCall(
                time=time,
                time_received=now,
                duration=_optional_float(row.get("duration")),
                target=target.key,
                type=call_type(row.get("type")),
                # a contact lookup uri is only present for known contacts
                target_is_contact=row.get("cached_lookup_uri") is not None,
                target_is_non_numeric=target.is_non_numeric,
                target_length=target.length,
            )
        except RECORD_ERRORS as exc:
            self._log_malformed(STREAM_CALLS, exc)
            return PhoneCall(time, now, None, None, PhoneCallType.UNKNOWN, None, True, 0)

        logger.debug(
            "Call log: %s, %s, %s, contact? %s, non-numeric? %s, length %s",
            measurement.type.value,
            measurement.duration,
            measurement.time,
            measurement.target_is_contact,
            measurement.target_is_non_numeric,
            measurement.target_length,
        )
        return measurement

    def _sms_measurement(self, row: Row, event_time: int) -> PhoneSms:
        time = event_time / 1000.0
        now = self._clock()
        try:
            target = anonymize_target(_text(row.get("address")), self.hash_generator)
            kind = sms_type(row.get("type"))
            # only incoming messages can be attributed to a contact
            from_contact: bool | None = None
            if kind is PhoneSmsType.INCOMING:
                from_contact = int(row.get("person") or 0) > 0
            measurement = PhoneSms(
                time=time,
                time_received=now,
                target=target.key,
                type=kind,
                length=_sms_length(row),
                target_is_contact=from_contact,
                target_is_non_numeric=target.is_non_numeric,
                target_length=target.length,
            )
        except RECORD_ERRORS as exc:
            self._log_malformed(STREAM_SMS, exc)
            return PhoneSms(time, now, None, PhoneSmsType.UNKNOWN, None, None, True, 0)

        logger.debug(
            "SMS log: %s, %s, %s chars, contact? %s, non-numeric? %s, length %s",
            measurement.type.value,
            measurement.time,
            measurement.length,
            measurement.target_is_contact,
            measurement.target_is_non_numeric,
            measurement.target_length,
        )
        return measurement
