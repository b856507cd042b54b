"""HTTP sink forwarding measurements to a collection endpoint."""

from __future__ import annotations

from phone_sensing.common.http import HttpClient
from phone_sensing.common.models import Measurement, ObservationKey


class HttpSink:
    """POSTs each record to ``{base_url}/topics/{topic}``.

    Retries and per-host rate limiting are handled by the client; errors
    surface as HttpRequestError so the caller decides whether a scan stops.
    """

    def __init__(self, base_url: str, client: HttpClient) -> None:
        self.base_url = base_url.rstrip("/")
        self.client = client

    def topic_url(self, topic: str) -> str:
        return f"{self.base_url}/topics/{topic}"

    def append(self, topic: str, key: ObservationKey, measurement: Measurement) -> None:
        payload = {"records": [{"key": key.to_dict(), "value": measurement.to_dict()}]}
        self.client.post_json(self.topic_url(topic), payload)

    def close(self) -> None:
        self.client.close()
