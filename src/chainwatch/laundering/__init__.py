"""
Money-laundering detection module for Chainwatch.

Provides:
- Flow graph construction and bounded path enumeration
- Typology detectors (layering, structuring, mixing, smurfing, cycling)
- Evidence-based pattern scoring
- Alert generation with deduplication and per-address rate limits
- Ledger and profile collaborators (in-memory and HTTP)
"""

from chainwatch.laundering.alerting import AlertConfig, AlertGenerator
from chainwatch.laundering.detector import MoneyLaunderingDetector
from chainwatch.laundering.flow import FlowAnalysisConfig, FlowAnalyzer, FlowGraph
from chainwatch.laundering.matchers import (
    CyclingDetector,
    Detector,
    LayeringDetector,
    MixingDetector,
    PatternConfig,
    PatternMatcher,
    SmurfingDetector,
    StructuringDetector,
)
from chainwatch.laundering.sources import (
    HttpLedgerSource,
    InMemoryLedger,
    ProfileSource,
    TransferSource,
)
from chainwatch.laundering.types import (
    AddressRiskProfile,
    AddressRole,
    AlertSeverity,
    DetectionResult,
    DetectionStats,
    Evidence,
    FlowPattern,
    MoneyLaunderingAlert,
    MoneyLaunderingError,
    PatternType,
    TransferKind,
    TransferRecord,
)

__all__ = [
    # Orchestration
    "MoneyLaunderingDetector",
    # Flow analysis
    "FlowAnalysisConfig",
    "FlowAnalyzer",
    "FlowGraph",
    # Detectors
    "Detector",
    "PatternConfig",
    "PatternMatcher",
    "LayeringDetector",
    "StructuringDetector",
    "MixingDetector",
    "SmurfingDetector",
    "CyclingDetector",
    # Alerts
    "AlertConfig",
    "AlertGenerator",
    # Collaborators
    "TransferSource",
    "ProfileSource",
    "InMemoryLedger",
    "HttpLedgerSource",
    # Types
    "AddressRiskProfile",
    "AddressRole",
    "AlertSeverity",
    "DetectionResult",
    "DetectionStats",
    "Evidence",
    "FlowPattern",
    "MoneyLaunderingAlert",
    "MoneyLaunderingError",
    "PatternType",
    "TransferKind",
    "TransferRecord",
]
