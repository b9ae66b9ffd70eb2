"""Network trust boundaries: segments, micro-segments and generated rules.

Quick start
-----------
::

    from zero_trust_engine.network import TrustBoundaryModel

    model = TrustBoundaryModel(management_networks=["10.0.0.0/24"])
    model.create_segment("evidence", "10.30.0.0/16", "HighlyTrusted", "Complete")
    print(model.status("evidence"))
"""
from __future__ import annotations

from zero_trust_engine.network.boundaries import (
    DEFAULT_MANAGEMENT_NETWORKS,
    MANAGEMENT_PORTS,
    TrustBoundaryModel,
    default_firewall_rules,
    default_monitoring_rules,
)
from zero_trust_engine.network.models import (
    Direction,
    FirewallRule,
    IsolationLevel,
    MicroSegment,
    MonitoringKind,
    MonitoringRule,
    NetworkSegment,
    RuleAction,
    SegmentStatus,
    TrustLevel,
)

__all__ = [
    "DEFAULT_MANAGEMENT_NETWORKS",
    "Direction",
    "FirewallRule",
    "IsolationLevel",
    "MANAGEMENT_PORTS",
    "MicroSegment",
    "MonitoringKind",
    "MonitoringRule",
    "NetworkSegment",
    "RuleAction",
    "SegmentStatus",
    "TrustBoundaryModel",
    "TrustLevel",
    "default_firewall_rules",
    "default_monitoring_rules",
]
