"""
Custom CloudWatch metrics for agentgate.

This module provides CloudWatch metrics emission using the Embedded Metric Format (EMF)
for efficient metric publishing without requiring explicit PutMetricData API calls.

Metrics are organized into the following categories:
- Identity: on-chain identity verification and cross-network scans
- Payment Gate: server-side allow/challenge/reject decisions
- Payment Retry: client-side 402 handling
- Sessions: engine session creation, reuse and removal
"""

import json
import logging
import os
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional

logger = logging.getLogger(__name__)


class MetricUnit(str, Enum):
    """CloudWatch metric units."""
    COUNT = "Count"
    MILLISECONDS = "Milliseconds"
    NONE = "None"


class GateMetricName(str, Enum):
    """Metric names for agentgate."""
    # Identity Metrics
    IDENTITY_VERIFICATION_COUNT = "IdentityVerificationCount"
    IDENTITY_VERIFIED = "IdentityVerified"
    IDENTITY_REJECTED = "IdentityRejected"
    IDENTITY_VERIFICATION_LATENCY = "IdentityVerificationLatency"
    REGISTRATION_SCAN_COUNT = "RegistrationScanCount"
    REGISTRATION_SCAN_NETWORK_FAILURES = "RegistrationScanNetworkFailures"
    REGISTRATIONS_FOUND = "RegistrationsFound"

    # Payment Gate Metrics
    PAYMENT_GATE_COUNT = "PaymentGateCount"
    PAYMENT_GATE_ALLOWED = "PaymentGateAllowed"
    PAYMENT_GATE_CHALLENGED = "PaymentGateChallenged"
    PAYMENT_GATE_REJECTED = "PaymentGateRejected"

    # Payment Retry Metrics
    PAYMENT_RETRY_COUNT = "PaymentRetryCount"
    PAYMENT_RETRY_SUCCESS = "PaymentRetrySuccess"
    PAYMENT_RETRY_FAILURE = "PaymentRetryFailure"
    PAYMENT_RETRY_DECLINED = "PaymentRetryDeclined"

    # Session Metrics
    SESSION_CREATED = "SessionCreated"
    SESSION_REUSED = "SessionReused"
    SESSION_REMOVED = "SessionRemoved"
    SESSION_STATELESS = "SessionStateless"
    SESSION_REJECTED = "SessionRejected"

    # Error Metrics
    GATE_ERROR_COUNT = "GateErrorCount"


@dataclass
class MetricDimensions:
    """Dimensions for CloudWatch metrics."""
    environment: str = field(default_factory=lambda: os.getenv("ENVIRONMENT", "development"))
    network: Optional[str] = None
    chain_id: Optional[int] = None
    outcome: Optional[str] = None
    error_type: Optional[str] = None

    def to_dict(self) -> dict[str, str]:
        """Convert to dictionary, excluding None values."""
        result = {"Environment": self.environment}
        if self.network:
            result["Network"] = self.network
        if self.chain_id is not None:
            result["ChainId"] = str(self.chain_id)
        if self.outcome:
            result["Outcome"] = self.outcome
        if self.error_type:
            result["ErrorType"] = self.error_type
        return result


class MetricsEmitter:
    """
    CloudWatch metrics emitter using Embedded Metric Format (EMF).

    EMF allows publishing metrics by simply logging JSON in a specific format.
    CloudWatch automatically extracts metrics from these logs.
    """

    NAMESPACE = "AgentGate"

    def __init__(self, service_name: str = "agentgate"):
        self.service_name = service_name
        self._dimensions = MetricDimensions()

    def _create_emf_log(
        self,
        metrics: dict[str, tuple[float, MetricUnit]],
        dimensions: Optional[MetricDimensions] = None,
        properties: Optional[dict[str, Any]] = None,
    ) -> dict[str, Any]:
        """
        Create an EMF-formatted log entry.

        Args:
            metrics: Dictionary of metric name to (value, unit) tuples
            dimensions: Optional custom dimensions
            properties: Additional properties to include in the log

        Returns:
            EMF-formatted dictionary
        """
        dims = dimensions or self._dimensions
        dim_dict = dims.to_dict()

        metrics_array = [
            {"Name": name, "Unit": unit.value}
            for name, (_, unit) in metrics.items()
        ]

        emf_log: dict[str, Any] = {
            "_aws": {
                "Timestamp": int(time.time() * 1000),
                "CloudWatchMetrics": [
                    {
                        "Namespace": self.NAMESPACE,
                        "Dimensions": [list(dim_dict.keys())],
                        "Metrics": metrics_array,
                    }
                ],
            },
            "service": self.service_name,
            **dim_dict,
        }

        for name, (value, _) in metrics.items():
            emf_log[name] = value

        if properties:
            emf_log.update(properties)

        return emf_log

    def emit(
        self,
        metric_name: GateMetricName,
        value: float,
        unit: MetricUnit = MetricUnit.COUNT,
        dimensions: Optional[MetricDimensions] = None,
        properties: Optional[dict[str, Any]] = None,
    ) -> None:
        """Emit a single metric."""
        emf_log = self._create_emf_log(
            {metric_name.value: (value, unit)},
            dimensions,
            properties,
        )
        # Print to stdout for CloudWatch to pick up
        print(json.dumps(emf_log))

    def emit_multiple(
        self,
        metrics: dict[GateMetricName, tuple[float, MetricUnit]],
        dimensions: Optional[MetricDimensions] = None,
        properties: Optional[dict[str, Any]] = None,
    ) -> None:
        """Emit multiple metrics in a single log entry."""
        metrics_dict = {name.value: value_unit for name, value_unit in metrics.items()}
        emf_log = self._create_emf_log(metrics_dict, dimensions, properties)
        print(json.dumps(emf_log))

    # Convenience methods for common metrics

    def record_identity_verification(
        self,
        valid: bool,
        latency_ms: float,
        chain_id: Optional[int] = None,
        error_type: Optional[str] = None,
    ) -> None:
        """
        Record an identity verification.

        Args:
            valid: Whether the identity verified
            latency_ms: Time taken for verification in milliseconds
            chain_id: Chain the identity lives on
            error_type: Taxonomy name of the failure (if rejected)
        """
        dims = MetricDimensions(
            chain_id=chain_id,
            error_type=error_type if not valid else None,
        )

        metrics: dict[GateMetricName, tuple[float, MetricUnit]] = {
            GateMetricName.IDENTITY_VERIFICATION_COUNT: (1, MetricUnit.COUNT),
            GateMetricName.IDENTITY_VERIFICATION_LATENCY: (latency_ms, MetricUnit.MILLISECONDS),
        }
        if valid:
            metrics[GateMetricName.IDENTITY_VERIFIED] = (1, MetricUnit.COUNT)
        else:
            metrics[GateMetricName.IDENTITY_REJECTED] = (1, MetricUnit.COUNT)

        properties = {"errorType": error_type} if error_type else {}
        self.emit_multiple(metrics, dims, properties)

    def record_registration_scan(
        self,
        networks: int,
        failures: int,
        found: int,
    ) -> None:
        """
        Record a cross-network registration scan.

        Args:
            networks: Number of networks scanned
            failures: Number of networks that did not answer
            found: Registrations found across all networks
        """
        self.emit_multiple(
            {
                GateMetricName.REGISTRATION_SCAN_COUNT: (1, MetricUnit.COUNT),
                GateMetricName.REGISTRATION_SCAN_NETWORK_FAILURES: (failures, MetricUnit.COUNT),
                GateMetricName.REGISTRATIONS_FOUND: (found, MetricUnit.COUNT),
            },
            properties={"networks": networks},
        )

    def record_payment_gate(
        self,
        outcome: str,
        network: Optional[str] = None,
        error: Optional[str] = None,
    ) -> None:
        """
        Record a payment gate decision.

        Args:
            outcome: "allow", "challenge" or "reject"
            network: Payment network
            error: Rejection reason (if rejected)
        """
        dims = MetricDimensions(network=network, outcome=outcome)

        metrics: dict[GateMetricName, tuple[float, MetricUnit]] = {
            GateMetricName.PAYMENT_GATE_COUNT: (1, MetricUnit.COUNT),
        }
        if outcome == "allow":
            metrics[GateMetricName.PAYMENT_GATE_ALLOWED] = (1, MetricUnit.COUNT)
        elif outcome == "challenge":
            metrics[GateMetricName.PAYMENT_GATE_CHALLENGED] = (1, MetricUnit.COUNT)
        else:
            metrics[GateMetricName.PAYMENT_GATE_REJECTED] = (1, MetricUnit.COUNT)

        properties = {"error": error[:200]} if error else {}
        self.emit_multiple(metrics, dims, properties)

    def record_payment_retry(
        self,
        outcome: str,
        network: Optional[str] = None,
        amount: Optional[str] = None,
        status_code: Optional[int] = None,
    ) -> None:
        """
        Record a client-side payment retry.

        Args:
            outcome: "success", "failure" or "declined"
            network: Payment network
            amount: Amount requested by the server
            status_code: Status of the retried response
        """
        dims = MetricDimensions(network=network, outcome=outcome)

        metrics: dict[GateMetricName, tuple[float, MetricUnit]] = {}
        if outcome == "declined":
            metrics[GateMetricName.PAYMENT_RETRY_DECLINED] = (1, MetricUnit.COUNT)
        else:
            metrics[GateMetricName.PAYMENT_RETRY_COUNT] = (1, MetricUnit.COUNT)
            if outcome == "success":
                metrics[GateMetricName.PAYMENT_RETRY_SUCCESS] = (1, MetricUnit.COUNT)
            else:
                metrics[GateMetricName.PAYMENT_RETRY_FAILURE] = (1, MetricUnit.COUNT)

        properties: dict[str, Any] = {}
        if amount:
            properties["amount"] = amount
        if status_code is not None:
            properties["statusCode"] = status_code
        self.emit_multiple(metrics, dims, properties)

    def record_session_event(self, event: str, session_id: Optional[str] = None) -> None:
        """
        Record a session lifecycle event.

        Args:
            event: "created", "reused", "removed", "stateless" or "rejected"
            session_id: Session identifier (truncated in the log)
        """
        metric = {
            "created": GateMetricName.SESSION_CREATED,
            "reused": GateMetricName.SESSION_REUSED,
            "removed": GateMetricName.SESSION_REMOVED,
            "stateless": GateMetricName.SESSION_STATELESS,
        }.get(event, GateMetricName.SESSION_REJECTED)

        properties = {"sessionId": session_id[:8] + "..."} if session_id else {}
        self.emit(metric, 1, MetricUnit.COUNT, MetricDimensions(outcome=event), properties)

    def record_error(
        self,
        error_type: str,
        error_message: str,
        operation: Optional[str] = None,
    ) -> None:
        """
        Record an error.

        Args:
            error_type: Type of error
            error_message: Error message
            operation: Operation that failed
        """
        dims = MetricDimensions(error_type=error_type[:50])

        self.emit(
            GateMetricName.GATE_ERROR_COUNT,
            1,
            MetricUnit.COUNT,
            dims,
            {
                "errorType": error_type,
                "errorMessage": error_message[:200],
                "operation": operation,
            },
        )


# Global metrics emitter instance
_metrics_emitter: Optional[MetricsEmitter] = None


def get_metrics_emitter() -> MetricsEmitter:
    """Get the global metrics emitter instance."""
    global _metrics_emitter
    if _metrics_emitter is None:
        _metrics_emitter = MetricsEmitter()
    return _metrics_emitter


def init_metrics(service_name: str = "agentgate") -> MetricsEmitter:
    """
    Initialize the global metrics emitter.

    Args:
        service_name: Service name for metric attribution

    Returns:
        Configured MetricsEmitter instance
    """
    global _metrics_emitter
    _metrics_emitter = MetricsEmitter(service_name)
    return _metrics_emitter
