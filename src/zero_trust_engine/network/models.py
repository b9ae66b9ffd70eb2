"""Network segments, micro-segments and their generated rule sets."""
from __future__ import annotations

import datetime
import ipaddress
from dataclasses import dataclass, field
from enum import Enum

from zero_trust_engine.errors import ValidationError

IPNetwork = ipaddress.IPv4Network | ipaddress.IPv6Network


def _utcnow() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc)


def parse_network(cidr: str) -> IPNetwork:
    """Parse *cidr* strictly; host bits must be zero."""
    try:
        return ipaddress.ip_network(cidr, strict=True)
    except ValueError as exc:
        raise ValidationError(f"Invalid CIDR {cidr!r}: {exc}") from exc


def _parse_enum(enum_cls, value):
    if isinstance(value, enum_cls):
        return value
    for member in enum_cls:
        if str(value).strip().lower() in (member.value.lower(), member.name.lower()):
            return member
    raise ValidationError(f"Unknown {enum_cls.__name__} {value!r}.")


class TrustLevel(str, Enum):
    UNTRUSTED = "Untrusted"
    LIMITED = "Limited"
    TRUSTED = "Trusted"
    HIGHLY_TRUSTED = "HighlyTrusted"

    @property
    def rank(self) -> int:
        return list(TrustLevel).index(self)

    @classmethod
    def parse(cls, value: "str | TrustLevel") -> "TrustLevel":
        return _parse_enum(cls, value)


class IsolationLevel(str, Enum):
    NONE = "None"
    BASIC = "Basic"
    ENHANCED = "Enhanced"
    COMPLETE = "Complete"

    @classmethod
    def parse(cls, value: "str | IsolationLevel") -> "IsolationLevel":
        return _parse_enum(cls, value)


class SegmentStatus(str, Enum):
    ACTIVE = "Active"
    WARNING = "Warning"
    ERROR = "Error"


class Direction(str, Enum):
    INBOUND = "Inbound"
    OUTBOUND = "Outbound"


class RuleAction(str, Enum):
    ALLOW = "Allow"
    DENY = "Deny"


class MonitoringKind(str, Enum):
    FLOW_LOGGING = "FlowLogging"
    INTRUSION_DETECTION = "IntrusionDetection"
    PACKET_CAPTURE = "PacketCapture"
    LATERAL_MOVEMENT_ALERT = "LateralMovementAlert"


@dataclass(frozen=True)
class FirewallRule:
    """One ordered firewall rule; lower ``priority`` is evaluated first.

    ``addresses`` are the remote side of the flow: sources for inbound
    rules, destinations for outbound rules. ``"any"`` matches everything.
    An empty ``ports`` tuple matches every port.
    """

    name: str
    direction: Direction
    action: RuleAction
    ports: tuple[int, ...] = ()
    addresses: tuple[str, ...] = ("any",)
    protocol: str = "TCP"
    priority: int = 100

    def __post_init__(self) -> None:
        for port in self.ports:
            if not 0 < port < 65536:
                raise ValidationError(f"Port {port} in rule {self.name!r} is out of range.")
        for address in self.addresses:
            if address != "any":
                try:
                    ipaddress.ip_network(address, strict=False)
                except ValueError as exc:
                    raise ValidationError(f"Invalid address {address!r} in rule {self.name!r}.") from exc

    def matches(self, direction: Direction, remote: ipaddress.IPv4Address | ipaddress.IPv6Address, port: int) -> bool:
        if direction is not self.direction:
            return False
        if self.ports and port not in self.ports:
            return False
        return any(
            address == "any" or remote in ipaddress.ip_network(address, strict=False)
            for address in self.addresses
        )

    def to_dict(self) -> dict[str, object]:
        return {
            "name": self.name,
            "direction": self.direction.value,
            "action": self.action.value,
            "ports": list(self.ports),
            "addresses": list(self.addresses),
            "protocol": self.protocol,
            "priority": self.priority,
        }

    @classmethod
    def from_dict(cls, data: dict[str, object]) -> "FirewallRule":
        return cls(
            name=str(data["name"]),
            direction=Direction(str(data["direction"])),
            action=RuleAction(str(data["action"])),
            ports=tuple(int(p) for p in data.get("ports") or []),  # type: ignore[union-attr]
            addresses=tuple(str(a) for a in data.get("addresses") or ["any"]),  # type: ignore[union-attr]
            protocol=str(data.get("protocol", "TCP")),
            priority=int(data.get("priority", 100)),  # type: ignore[arg-type]
        )


@dataclass(frozen=True)
class MonitoringRule:
    name: str
    kind: MonitoringKind
    enabled: bool = True
    alert_severity: str = "INFO"

    def to_dict(self) -> dict[str, object]:
        return {
            "name": self.name,
            "kind": self.kind.value,
            "enabled": self.enabled,
            "alert_severity": self.alert_severity,
        }

    @classmethod
    def from_dict(cls, data: dict[str, object]) -> "MonitoringRule":
        return cls(
            name=str(data["name"]),
            kind=MonitoringKind(str(data["kind"])),
            enabled=bool(data.get("enabled", True)),
            alert_severity=str(data.get("alert_severity", "INFO")),
        )


@dataclass
class MicroSegment:
    """A sub-range of a segment with its own port and source allow-lists.

    Parameters
    ----------
    name:
        Unique within the parent segment.
    cidr:
        Must lie inside the parent's range.
    trust_level:
        Never higher than the parent's.
    allowed_ports:
        Inbound ports reachable inside the micro-segment.
    allowed_sources:
        CIDRs allowed to reach those ports. Empty means the parent range.
    micro_firewall_rules:
        Generated rules realising the allow-lists, ending in deny-all.
    """

    name: str
    cidr: str
    trust_level: TrustLevel
    allowed_ports: list[int] = field(default_factory=list)
    allowed_sources: list[str] = field(default_factory=list)
    micro_firewall_rules: list[FirewallRule] = field(default_factory=list)

    def __post_init__(self) -> None:
        if not self.name or not self.name.strip():
            raise ValidationError("Micro-segment name must not be empty.")
        parse_network(self.cidr)
        self.trust_level = TrustLevel.parse(self.trust_level)
        for port in self.allowed_ports:
            if not 0 < port < 65536:
                raise ValidationError(f"Port {port} is out of range.")
        for source in self.allowed_sources:
            parse_network(source)

    @property
    def network(self) -> IPNetwork:
        return parse_network(self.cidr)

    def to_dict(self) -> dict[str, object]:
        return {
            "name": self.name,
            "cidr": self.cidr,
            "trust_level": self.trust_level.value,
            "allowed_ports": list(self.allowed_ports),
            "allowed_sources": list(self.allowed_sources),
            "micro_firewall_rules": [r.to_dict() for r in self.micro_firewall_rules],
        }

    @classmethod
    def from_dict(cls, data: dict[str, object]) -> "MicroSegment":
        return cls(
            name=str(data["name"]),
            cidr=str(data["cidr"]),
            trust_level=TrustLevel.parse(str(data["trust_level"])),
            allowed_ports=[int(p) for p in data.get("allowed_ports") or []],  # type: ignore[union-attr]
            allowed_sources=[str(s) for s in data.get("allowed_sources") or []],  # type: ignore[union-attr]
            micro_firewall_rules=[FirewallRule.from_dict(r) for r in data.get("micro_firewall_rules") or []],  # type: ignore[union-attr]
        )


@dataclass
class NetworkSegment:
    """A named network range tagged with a trust and isolation level."""

    name: str
    cidr: str
    trust_level: TrustLevel
    isolation_level: IsolationLevel = IsolationLevel.BASIC
    description: str = ""
    micro_segments: list[MicroSegment] = field(default_factory=list)
    firewall_rules: list[FirewallRule] = field(default_factory=list)
    monitoring_rules: list[MonitoringRule] = field(default_factory=list)
    created_at: datetime.datetime = field(default_factory=_utcnow)

    def __post_init__(self) -> None:
        if not self.name or not self.name.strip():
            raise ValidationError("Segment name must not be empty.")
        parse_network(self.cidr)
        self.trust_level = TrustLevel.parse(self.trust_level)
        self.isolation_level = IsolationLevel.parse(self.isolation_level)

    @property
    def network(self) -> IPNetwork:
        return parse_network(self.cidr)

    @property
    def status(self) -> SegmentStatus:
        """Error with neither rule set, Warning with only one, Active with both."""
        has_firewall = bool(self.firewall_rules)
        has_monitoring = bool(self.monitoring_rules)
        if has_firewall and has_monitoring:
            return SegmentStatus.ACTIVE
        if has_firewall or has_monitoring:
            return SegmentStatus.WARNING
        return SegmentStatus.ERROR

    def micro_segment(self, name: str) -> MicroSegment | None:
        for micro in self.micro_segments:
            if micro.name == name:
                return micro
        return None

    def to_dict(self) -> dict[str, object]:
        return {
            "name": self.name,
            "cidr": self.cidr,
            "trust_level": self.trust_level.value,
            "isolation_level": self.isolation_level.value,
            "description": self.description,
            "status": self.status.value,
            "micro_segments": [m.to_dict() for m in self.micro_segments],
            "firewall_rules": [r.to_dict() for r in self.firewall_rules],
            "monitoring_rules": [r.to_dict() for r in self.monitoring_rules],
            "created_at": self.created_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, object]) -> "NetworkSegment":
        return cls(
            name=str(data["name"]),
            cidr=str(data["cidr"]),
            trust_level=TrustLevel.parse(str(data["trust_level"])),
            isolation_level=IsolationLevel.parse(str(data.get("isolation_level", "Basic"))),
            description=str(data.get("description", "")),
            micro_segments=[MicroSegment.from_dict(m) for m in data.get("micro_segments") or []],  # type: ignore[union-attr]
            firewall_rules=[FirewallRule.from_dict(r) for r in data.get("firewall_rules") or []],  # type: ignore[union-attr]
            monitoring_rules=[MonitoringRule.from_dict(r) for r in data.get("monitoring_rules") or []],  # type: ignore[union-attr]
            created_at=datetime.datetime.fromisoformat(str(data["created_at"])),
        )
