"""テレメトリー送信の OpenTelemetry メトリクス定義"""

from __future__ import annotations

from opentelemetry import metrics

_meter = metrics.get_meter("mms_featureflag", version="0.1.0")

events_enqueued_total = _meter.create_counter(
    name="featureflag_events_enqueued_total",
    description="Total number of telemetry events accepted into the outbound queue",
    unit="1",
)

events_dropped_total = _meter.create_counter(
    name="featureflag_events_dropped_total",
    description="Total number of telemetry events dropped",
    unit="1",
)

events_delivered_total = _meter.create_counter(
    name="featureflag_events_delivered_total",
    description="Total number of telemetry events delivered to the sink",
    unit="1",
)

delivery_retries_total = _meter.create_counter(
    name="featureflag_delivery_retries_total",
    description="Total number of telemetry batch delivery retries",
    unit="1",
)
