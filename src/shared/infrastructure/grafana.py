"""
Grafana OTLP Metrics Exporter
==============================

Pushes LLM usage metrics (tokens, latency) to Grafana Cloud via OTLP.

Metrics exported:
- llm_tokens_total: Total tokens used (prompt + completion)
- llm_prompt_tokens / llm_completion_tokens: Token split
- llm_latency_ms: LLM request latency in milliseconds
"""

import base64
import time
from typing import Optional, Dict, List

import httpx

from src.config import settings
from src.shared.infrastructure.logging import get_logger

logger = get_logger(__name__)


def _gauge(name: str, unit: str, description: str, value: int,
           timestamp_ns: int, attributes: List[dict]) -> dict:
    return {
        "name": name,
        "unit": unit,
        "description": description,
        # Gauge rather than Sum: Grafana Cloud charts these without rate()
        "gauge": {
            "dataPoints": [
                {
                    "asInt": value,
                    "timeUnixNano": timestamp_ns,
                    "attributes": attributes
                }
            ]
        }
    }


def _string_attributes(values: Dict[str, str]) -> List[dict]:
    return [
        {"key": key, "value": {"stringValue": str(value)}}
        for key, value in values.items()
    ]


class GrafanaOTLPExporter:
    """
    Export LLM metrics to Grafana Cloud via OTLP HTTP endpoint.

    Disabled (and silent apart from one warning) unless host, API key and
    instance ID are all configured.
    """

    def __init__(
        self,
        host: Optional[str] = None,
        api_key: Optional[str] = None,
        instance_id: Optional[str] = None,
        timeout: float = 5.0
    ):
        self._host = host or settings.grafana_host
        self._api_key = api_key or settings.grafana_api_key
        self._instance_id = instance_id or settings.grafana_instance_id
        self._timeout = timeout
        self._enabled = bool(self._host and self._api_key and self._instance_id)

        if self._enabled:
            auth_pair = f"{self._instance_id}:{self._api_key}"
            self._auth_encoded = base64.b64encode(auth_pair.encode()).decode()
            if "/otlp/v1/metrics" not in self._host:
                self._url = f"{self._host.rstrip('/')}/otlp/v1/metrics"
            else:
                self._url = self._host
            logger.info(
                "Grafana OTLP exporter initialized",
                extra={"host": self._host, "instance_id": self._instance_id}
            )
        else:
            logger.warning(
                "Grafana OTLP exporter not configured - metrics will not be exported",
                extra={
                    "host_configured": bool(self._host),
                    "api_key_configured": bool(self._api_key),
                    "instance_id_configured": bool(self._instance_id)
                }
            )

    def is_enabled(self) -> bool:
        """Check if exporter is properly configured."""
        return self._enabled

    def build_llm_payload(
        self,
        model: str,
        prompt_tokens: int,
        completion_tokens: int,
        latency_ms: int,
        operation: str,
        attributes: Optional[Dict[str, str]] = None
    ) -> dict:
        """Build the OTLP resourceMetrics document for one LLM call."""
        timestamp_ns = int(time.time() * 1_000_000_000)
        metric_attributes = _string_attributes({
            "model": model,
            "operation": operation,
            "service": settings.app_name,
            **(attributes or {})
        })

        return {
            "resourceMetrics": [
                {
                    "resource": {
                        "attributes": _string_attributes({
                            "service.name": settings.app_name,
                            "service.version": settings.app_version,
                            "deployment.environment": settings.environment,
                        })
                    },
                    "scopeMetrics": [
                        {
                            "metrics": [
                                _gauge("llm_tokens_total", "1", "Total tokens used in LLM requests",
                                       prompt_tokens + completion_tokens, timestamp_ns, metric_attributes),
                                _gauge("llm_latency_ms", "ms", "LLM request latency in milliseconds",
                                       latency_ms, timestamp_ns, metric_attributes),
                                _gauge("llm_prompt_tokens", "1", "Number of prompt tokens in LLM requests",
                                       prompt_tokens, timestamp_ns, metric_attributes),
                                _gauge("llm_completion_tokens", "1", "Number of completion tokens generated",
                                       completion_tokens, timestamp_ns, metric_attributes),
                            ]
                        }
                    ]
                }
            ]
        }

    async def export_llm_metrics(
        self,
        model: str,
        prompt_tokens: int,
        completion_tokens: int,
        latency_ms: int,
        operation: str = "chat_completion",
        attributes: Optional[Dict[str, str]] = None
    ) -> bool:
        """
        Export LLM usage metrics to Grafana.

        Never raises; metrics must not affect message processing.

        Returns:
            True if export succeeded, False otherwise
        """
        if not self._enabled:
            return False

        payload = self.build_llm_payload(
            model, prompt_tokens, completion_tokens, latency_ms, operation, attributes
        )
        headers = {
            "Content-Type": "application/json",
            "Authorization": f"Basic {self._auth_encoded}",
            "X-Grafana-Org-Id": str(self._instance_id)
        }

        try:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                response = await client.post(self._url, headers=headers, json=payload)
        except httpx.HTTPError as e:
            logger.error(
                "Error exporting metrics to Grafana",
                extra={"error": str(e), "operation": operation}
            )
            return False

        if response.status_code in (200, 202):
            logger.debug(
                "LLM metrics exported to Grafana",
                extra={"model": model, "operation": operation, "latency_ms": latency_ms}
            )
            return True

        logger.warning(
            "Failed to export metrics to Grafana",
            extra={
                "status_code": response.status_code,
                "response": response.text[:500],
                "url": self._url
            }
        )
        return False


_grafana_exporter: Optional[GrafanaOTLPExporter] = None


def get_grafana_exporter() -> Optional[GrafanaOTLPExporter]:
    """Get or create global Grafana exporter instance."""
    global _grafana_exporter
    if _grafana_exporter is None:
        _grafana_exporter = GrafanaOTLPExporter()
    return _grafana_exporter


def init_grafana_exporter(
    host: str,
    api_key: str,
    instance_id: str
) -> GrafanaOTLPExporter:
    """Initialize Grafana exporter with credentials."""
    global _grafana_exporter
    _grafana_exporter = GrafanaOTLPExporter(
        host=host,
        api_key=api_key,
        instance_id=instance_id
    )
    return _grafana_exporter
