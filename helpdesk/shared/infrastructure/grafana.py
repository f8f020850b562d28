"""
Grafana OTLP Metrics Exporter
==============================

Pushes LLM usage and pipeline step metrics to Grafana Cloud via OTLP.

Metrics exported:
- llm_tokens_total / llm_prompt_tokens / llm_completion_tokens
- llm_latency_ms: LLM request latency in milliseconds
- pipeline_step_latency_ms: latency of each orchestrator step

The exporter is constructed once at startup and injected into the LLM
clients and the pipeline. Export failures are logged and reported as
``False``; they never raise into the caller.
"""

import base64
import time
from typing import Any, Dict, List, Optional

import httpx

from helpdesk.shared.infrastructure.logging import get_logger

logger = get_logger(__name__)


class GrafanaOTLPExporter:
    """
    Export metrics to Grafana Cloud via OTLP HTTP endpoint.

    Uses OpenTelemetry Protocol (OTLP) JSON format with gauge data points.
    """

    def __init__(
        self,
        host: Optional[str] = None,
        api_key: Optional[str] = None,
        instance_id: Optional[str] = None,
        service_name: str = "helpdesk-ai",
        service_version: str = "1.0.0",
        environment: str = "development",
        transport: Optional[httpx.AsyncBaseTransport] = None,
        timeout: float = 10.0
    ):
        """
        Initialize Grafana OTLP exporter.

        Args:
            host: Grafana OTLP gateway URL (e.g., https://otlp-gateway-prod-ap-south-1.grafana.net)
            api_key: Grafana API key
            instance_id: Instance ID for authentication
            transport: Optional httpx transport (tests)
        """
        self._host = host
        self._api_key = api_key
        self._instance_id = instance_id
        self._service_name = service_name
        self._service_version = service_version
        self._environment = environment
        self._transport = transport
        self._timeout = timeout
        self._enabled = bool(host and api_key and instance_id)

        if self._enabled:
            auth_pair = f"{instance_id}:{api_key}"
            self._auth_encoded = base64.b64encode(auth_pair.encode()).decode()
            if "/otlp/v1/metrics" not in host:
                self._url = f"{host.rstrip('/')}/otlp/v1/metrics"
            else:
                self._url = host
            logger.info(
                "Grafana OTLP exporter initialized",
                extra={"host": host, "instance_id": instance_id}
            )
        else:
            logger.info(
                "Grafana OTLP exporter not configured - metrics will not be exported",
                extra={
                    "host_configured": bool(host),
                    "api_key_configured": bool(api_key),
                    "instance_id_configured": bool(instance_id)
                }
            )

    def is_enabled(self) -> bool:
        """Check if exporter is properly configured."""
        return self._enabled

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

        Args:
            model: LLM model name
            prompt_tokens: Number of prompt tokens used
            completion_tokens: Number of completion tokens generated
            latency_ms: Request latency in milliseconds
            operation: Pipeline step that issued the call (route, summarize, ...)
            attributes: Additional attributes to attach to metrics

        Returns:
            True if export succeeded, False otherwise
        """
        if not self._enabled:
            return False

        labels = {"model": model, "operation": operation, **(attributes or {})}
        metrics = [
            self._gauge("llm_tokens_total", "1", "Total tokens used in LLM requests",
                        prompt_tokens + completion_tokens, labels),
            self._gauge("llm_latency_ms", "ms", "LLM request latency in milliseconds",
                        latency_ms, labels),
            self._gauge("llm_prompt_tokens", "1", "Number of prompt tokens in LLM requests",
                        prompt_tokens, labels),
            self._gauge("llm_completion_tokens", "1", "Number of completion tokens generated",
                        completion_tokens, labels),
        ]
        return await self._send(metrics, context={"model": model, "operation": operation})

    async def export_step_latency(
        self,
        workflow: str,
        step: str,
        latency_ms: float,
        succeeded: bool = True
    ) -> bool:
        """
        Export the latency of one orchestrator step.

        Args:
            workflow: intake, resolution, message or preview
            step: Step name (moderate, embed, route, ...)
            latency_ms: Step latency in milliseconds
            succeeded: Whether the step completed without raising
        """
        if not self._enabled:
            return False

        labels = {
            "workflow": workflow,
            "step": step,
            "outcome": "success" if succeeded else "error",
        }
        metrics = [
            self._gauge("pipeline_step_latency_ms", "ms", "Pipeline step latency in milliseconds",
                        int(latency_ms), labels)
        ]
        return await self._send(metrics, context={"workflow": workflow, "step": step})

    def _gauge(
        self,
        name: str,
        unit: str,
        description: str,
        value: int,
        labels: Dict[str, Any]
    ) -> dict:
        attributes = [
            {"key": key, "value": {"stringValue": str(val)}}
            for key, val in labels.items()
        ]
        attributes.append({"key": "service", "value": {"stringValue": self._service_name}})
        return {
            "name": name,
            "unit": unit,
            "description": description,
            "gauge": {
                "dataPoints": [
                    {
                        "asInt": int(value),
                        "timeUnixNano": int(time.time() * 1_000_000_000),
                        "attributes": attributes
                    }
                ]
            }
        }

    def build_payload(self, metrics: List[dict]) -> dict:
        """Wrap gauges in an OTLP resourceMetrics envelope."""
        return {
            "resourceMetrics": [
                {
                    "resource": {
                        "attributes": [
                            {"key": "service.name", "value": {"stringValue": self._service_name}},
                            {"key": "service.version", "value": {"stringValue": self._service_version}},
                            {"key": "deployment.environment", "value": {"stringValue": self._environment}},
                        ]
                    },
                    "scopeMetrics": [{"metrics": metrics}]
                }
            ]
        }

    async def _send(self, metrics: List[dict], context: Dict[str, Any]) -> bool:
        headers = {
            "Content-Type": "application/json",
            "Authorization": f"Basic {self._auth_encoded}",
            "X-Grafana-Org-Id": str(self._instance_id)
        }

        try:
            async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
                response = await client.post(self._url, headers=headers, json=self.build_payload(metrics))
        except httpx.HTTPError as e:
            logger.error(
                "Error exporting metrics to Grafana",
                extra={"error": str(e), **context}
            )
            return False

        if response.status_code in (200, 202):
            logger.debug(
                "Metrics exported to Grafana",
                extra={"status_code": response.status_code, **context}
            )
            return True

        logger.warning(
            "Failed to export metrics to Grafana",
            extra={
                "status_code": response.status_code,
                "response": response.text[:500],
                "url": self._url,
                **context
            }
        )
        return False
