"""
Gateway Module for the billing engine.

External systems the engine talks to: currently the insurance clearinghouse.
"""

from aac_billing.gateways.base import (
    GatewayConfig,
    GatewayError,
    GatewayHealth,
    GatewayTimeoutError,
    GatewayUnavailableError,
)
from aac_billing.gateways.clearinghouse_gateway import (
    ClaimSubmission,
    ClearinghouseGateway,
    ClearinghouseRejectedError,
    ClearinghouseTimeoutError,
    ClearinghouseUnavailableError,
    HttpClearinghouseGateway,
    SimulatedClearinghouseGateway,
    SubmissionReceipt,
    get_clearinghouse_gateway,
)

__all__ = [
    "GatewayConfig",
    "GatewayError",
    "GatewayHealth",
    "GatewayTimeoutError",
    "GatewayUnavailableError",
    "ClaimSubmission",
    "ClearinghouseGateway",
    "ClearinghouseRejectedError",
    "ClearinghouseTimeoutError",
    "ClearinghouseUnavailableError",
    "HttpClearinghouseGateway",
    "SimulatedClearinghouseGateway",
    "SubmissionReceipt",
    "get_clearinghouse_gateway",
]
