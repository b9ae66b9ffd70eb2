"""TrustBoundaryModel — network segments, micro-segments and flow checks.

Segments are non-overlapping network ranges. Creating one generates its
firewall rules from the trust level and its monitoring rules from the
isolation level:

* every segment gets a lowest-precedence deny-all inbound rule;
* ``HighlyTrusted`` admits 22, 443 and 8889 from the management networks;
* ``Trusted`` admits 443 and 8889 from the management networks;
* ``Limited`` admits nothing inbound and may only reach port 8000 outbound;
* ``Untrusted`` is denied in both directions.

Realising the rules on actual firewalls is left to an injected
``rule_sink`` callable that receives each created or changed segment.
"""
from __future__ import annotations

import copy
import datetime
import ipaddress
import logging
import threading
from typing import Callable, Iterable

from zero_trust_engine.audit.log import AuditLog, Severity
from zero_trust_engine.errors import CIDRConflictError, DuplicateError, NotFoundError, ValidationError
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
    parse_network,
)

logger = logging.getLogger(__name__)

DEFAULT_MANAGEMENT_NETWORKS = ("10.0.0.0/24",)
MANAGEMENT_PORTS = (22, 443, 8889)
SERVICE_PORTS = (443, 8889)
LIMITED_OUTBOUND_PORTS = (8000,)
ALLOW_PRIORITY = 100
DENY_ALL_PRIORITY = 1000

RuleSink = Callable[[NetworkSegment], None]


def _utcnow() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc)


def _deny_all(name: str, direction: Direction) -> FirewallRule:
    return FirewallRule(
        name=f"{name}-deny-all-{direction.value.lower()}",
        direction=direction,
        action=RuleAction.DENY,
        priority=DENY_ALL_PRIORITY,
    )


def default_firewall_rules(
    name: str,
    trust_level: TrustLevel,
    management_networks: Iterable[str] = DEFAULT_MANAGEMENT_NETWORKS,
) -> list[FirewallRule]:
    """Generate the firewall rule set for a segment of *trust_level*."""
    management = tuple(management_networks)
    rules = [_deny_all(name, Direction.INBOUND)]
    if trust_level is TrustLevel.HIGHLY_TRUSTED:
        rules.append(
            FirewallRule(
                name=f"{name}-allow-management",
                direction=Direction.INBOUND,
                action=RuleAction.ALLOW,
                ports=MANAGEMENT_PORTS,
                addresses=management,
                priority=ALLOW_PRIORITY,
            )
        )
    elif trust_level is TrustLevel.TRUSTED:
        rules.append(
            FirewallRule(
                name=f"{name}-allow-services",
                direction=Direction.INBOUND,
                action=RuleAction.ALLOW,
                ports=SERVICE_PORTS,
                addresses=management,
                priority=ALLOW_PRIORITY,
            )
        )
    elif trust_level is TrustLevel.LIMITED:
        rules.append(
            FirewallRule(
                name=f"{name}-allow-outbound-collection",
                direction=Direction.OUTBOUND,
                action=RuleAction.ALLOW,
                ports=LIMITED_OUTBOUND_PORTS,
                priority=ALLOW_PRIORITY,
            )
        )
        rules.append(_deny_all(name, Direction.OUTBOUND))
    else:
        rules.append(_deny_all(name, Direction.OUTBOUND))
    return sorted(rules, key=lambda r: (r.priority, r.name))


def default_monitoring_rules(name: str, isolation_level: IsolationLevel) -> list[MonitoringRule]:
    """Generate monitoring rules; each isolation level adds to the one below."""
    if isolation_level is IsolationLevel.NONE:
        return []
    rules = [MonitoringRule(f"{name}-flow-logging", MonitoringKind.FLOW_LOGGING)]
    if isolation_level in (IsolationLevel.ENHANCED, IsolationLevel.COMPLETE):
        rules.append(MonitoringRule(f"{name}-ids", MonitoringKind.INTRUSION_DETECTION, alert_severity="WARNING"))
    if isolation_level is IsolationLevel.COMPLETE:
        rules.append(MonitoringRule(f"{name}-packet-capture", MonitoringKind.PACKET_CAPTURE))
        rules.append(
            MonitoringRule(f"{name}-lateral-movement", MonitoringKind.LATERAL_MOVEMENT_ALERT, alert_severity="HIGH")
        )
    return rules


def micro_firewall_rules(name: str, allowed_ports: list[int], sources: list[str]) -> list[FirewallRule]:
    rules = []
    if allowed_ports:
        rules.append(
            FirewallRule(
                name=f"{name}-allow",
                direction=Direction.INBOUND,
                action=RuleAction.ALLOW,
                ports=tuple(sorted(set(allowed_ports))),
                addresses=tuple(sources),
                priority=ALLOW_PRIORITY,
            )
        )
    rules.append(_deny_all(name, Direction.INBOUND))
    return rules


def _first_match(
    rules: Iterable[FirewallRule],
    direction: Direction,
    remote: ipaddress.IPv4Address | ipaddress.IPv6Address,
    port: int,
) -> FirewallRule | None:
    for rule in sorted(rules, key=lambda r: (r.priority, r.name)):
        if rule.matches(direction, remote, port):
            return rule
    return None


class TrustBoundaryModel:
    """Registry of network segments and their rule sets.

    Parameters
    ----------
    management_networks:
        Ranges allowed to reach management ports of trusted segments.
    audit_log:
        Receives one record per segment change.
    rule_sink:
        Called with a copy of every created or changed segment so that the
        rules can be applied to the real firewall. Failures are logged; the
        model keeps the change.
    clock:
        Source of the current UTC time.

    Example
    -------
    ::

        model = TrustBoundaryModel()
        model.create_segment("forensics", "10.20.0.0/16", "HighlyTrusted", "Complete")
        model.is_flow_allowed("10.0.0.5", "10.20.1.1", 22)  # True
    """

    def __init__(
        self,
        management_networks: Iterable[str] = DEFAULT_MANAGEMENT_NETWORKS,
        audit_log: AuditLog | None = None,
        rule_sink: RuleSink | None = None,
        clock: Callable[[], datetime.datetime] = _utcnow,
    ) -> None:
        self._management_networks = tuple(management_networks)
        for cidr in self._management_networks:
            parse_network(cidr)
        self._segments: dict[str, NetworkSegment] = {}
        self._lock = threading.RLock()
        self._audit = audit_log
        self._rule_sink = rule_sink
        self._clock = clock

    @property
    def management_networks(self) -> tuple[str, ...]:
        return self._management_networks

    # ------------------------------------------------------------------
    # Segments
    # ------------------------------------------------------------------

    def create_segment(
        self,
        name: str,
        cidr: str,
        trust_level: TrustLevel | str,
        isolation_level: IsolationLevel | str = IsolationLevel.BASIC,
        description: str = "",
        actor: str = "system",
    ) -> NetworkSegment:
        """Create a segment with generated firewall and monitoring rules.

        Raises
        ------
        DuplicateError
            If *name* is already used.
        CIDRConflictError
            If *cidr* overlaps an existing segment. Nothing is created.
        ValidationError
            For a malformed CIDR or unknown trust/isolation level.
        """
        segment = NetworkSegment(
            name=name,
            cidr=cidr,
            trust_level=TrustLevel.parse(trust_level),
            isolation_level=IsolationLevel.parse(isolation_level),
            description=description,
            created_at=self._clock(),
        )
        segment.firewall_rules = default_firewall_rules(name, segment.trust_level, self._management_networks)
        segment.monitoring_rules = default_monitoring_rules(name, segment.isolation_level)

        with self._lock:
            if name in self._segments:
                raise DuplicateError(f"Segment {name!r} already exists.")
            network = segment.network
            for existing in self._segments.values():
                if network.version == existing.network.version and network.overlaps(existing.network):
                    raise CIDRConflictError(cidr, existing.name, existing.cidr)
            self._segments[name] = segment
            snapshot = copy.deepcopy(segment)

        logger.info(
            "Created segment %s (%s, %s, %s)",
            name, cidr, segment.trust_level.value, segment.isolation_level.value,
        )
        self._record(
            "segment_created",
            name,
            actor,
            cidr=cidr,
            trust_level=segment.trust_level.value,
            isolation_level=segment.isolation_level.value,
            firewall_rules=len(segment.firewall_rules),
            monitoring_rules=len(segment.monitoring_rules),
        )
        self._publish(snapshot)
        return copy.deepcopy(snapshot)

    def add_micro_segment(
        self,
        parent: str,
        name: str,
        cidr: str,
        trust_level: TrustLevel | str | None = None,
        allowed_ports: Iterable[int] = (),
        allowed_sources: Iterable[str] = (),
        actor: str = "system",
    ) -> MicroSegment:
        """Carve a micro-segment out of *parent*.

        The micro-segment inherits the parent's trust level when none is
        given. Inbound traffic to it is governed by its own rules: the
        allowed ports from the allowed sources (the parent range when no
        sources are listed), everything else denied.

        Raises
        ------
        NotFoundError
            If *parent* does not exist.
        ValidationError
            If the range is outside the parent or the trust level is higher
            than the parent's.
        DuplicateError
            If *name* is taken within the parent.
        CIDRConflictError
            If the range overlaps a sibling micro-segment.
        """
        ports = [int(p) for p in allowed_ports]
        sources = list(allowed_sources)
        with self._lock:
            segment = self._require(parent)
            level = TrustLevel.parse(trust_level) if trust_level is not None else segment.trust_level
            micro = MicroSegment(
                name=name,
                cidr=cidr,
                trust_level=level,
                allowed_ports=ports,
                allowed_sources=sources,
            )
            network = micro.network
            if network.version != segment.network.version or not network.subnet_of(segment.network):  # type: ignore[arg-type]
                raise ValidationError(f"Micro-segment {cidr} is not inside {parent} ({segment.cidr}).")
            if level.rank > segment.trust_level.rank:
                raise ValidationError(
                    f"Micro-segment trust {level.value} exceeds parent trust {segment.trust_level.value}."
                )
            if segment.micro_segment(name) is not None:
                raise DuplicateError(f"Micro-segment {name!r} already exists in {parent!r}.")
            for sibling in segment.micro_segments:
                if network.overlaps(sibling.network):
                    raise CIDRConflictError(cidr, sibling.name, sibling.cidr)
            micro.micro_firewall_rules = micro_firewall_rules(name, ports, sources or [segment.cidr])
            segment.micro_segments.append(micro)
            snapshot = copy.deepcopy(segment)

        self._record(
            "micro_segment_added",
            parent,
            actor,
            micro_segment=name,
            cidr=cidr,
            trust_level=level.value,
            allowed_ports=ports,
        )
        self._publish(snapshot)
        return copy.deepcopy(micro)

    def remove_segment(self, name: str, actor: str = "system") -> None:
        with self._lock:
            self._require(name)
            del self._segments[name]
        self._record("segment_removed", name, actor, severity=Severity.WARNING)

    def set_firewall_rules(self, name: str, rules: Iterable[FirewallRule], actor: str = "system") -> NetworkSegment:
        """Replace the firewall rules of *name*. An empty list is allowed."""
        new_rules = sorted(rules, key=lambda r: (r.priority, r.name))
        with self._lock:
            segment = self._require(name)
            segment.firewall_rules = new_rules
            snapshot = copy.deepcopy(segment)
        self._record(
            "firewall_rules_set",
            name,
            actor,
            severity=Severity.INFO if new_rules else Severity.WARNING,
            count=len(new_rules),
            status=snapshot.status.value,
        )
        self._publish(snapshot)
        return snapshot

    def set_monitoring_rules(self, name: str, rules: Iterable[MonitoringRule], actor: str = "system") -> NetworkSegment:
        """Replace the monitoring rules of *name*. An empty list is allowed."""
        new_rules = list(rules)
        with self._lock:
            segment = self._require(name)
            segment.monitoring_rules = new_rules
            snapshot = copy.deepcopy(segment)
        self._record(
            "monitoring_rules_set",
            name,
            actor,
            severity=Severity.INFO if new_rules else Severity.WARNING,
            count=len(new_rules),
            status=snapshot.status.value,
        )
        return snapshot

    def restore(self, segment: NetworkSegment) -> None:
        """Load a persisted segment without regenerating its rules."""
        with self._lock:
            if segment.name in self._segments:
                raise DuplicateError(f"Segment {segment.name!r} already exists.")
            for existing in self._segments.values():
                if segment.network.version == existing.network.version and segment.network.overlaps(existing.network):
                    raise CIDRConflictError(segment.cidr, existing.name, existing.cidr)
            self._segments[segment.name] = copy.deepcopy(segment)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get(self, name: str) -> NetworkSegment:
        with self._lock:
            return copy.deepcopy(self._require(name))

    def list(self) -> list[NetworkSegment]:
        with self._lock:
            return [copy.deepcopy(s) for s in sorted(self._segments.values(), key=lambda s: s.name)]

    def status(self, name: str) -> SegmentStatus:
        with self._lock:
            return self._require(name).status

    def find_segment(self, address: str) -> tuple[NetworkSegment, MicroSegment | None] | None:
        """Return the segment (and micro-segment, if any) containing *address*."""
        ip = self._parse_address(address)
        with self._lock:
            for segment in self._segments.values():
                if ip.version == segment.network.version and ip in segment.network:
                    micro = next(
                        (m for m in segment.micro_segments if ip in m.network),
                        None,
                    )
                    return copy.deepcopy(segment), copy.deepcopy(micro)
        return None

    def is_flow_allowed(self, source: str, destination: str, port: int) -> bool:
        """Decide whether a TCP flow from *source* to *destination*:*port* is permitted.

        The source segment's outbound rules are consulted first; the first
        matching rule decides and no match permits. Then the destination's
        inbound rules: those of the micro-segment when the destination lies
        in one, else those of the segment. The first match decides and no
        match denies. Flows touching no managed segment are denied.
        """
        src_ip = self._parse_address(source)
        dst_ip = self._parse_address(destination)
        src = self.find_segment(source)
        dst = self.find_segment(destination)
        if src is None and dst is None:
            logger.debug("Flow %s -> %s:%d touches no segment; denied", source, destination, port)
            return False

        if src is not None:
            rule = _first_match(src[0].firewall_rules, Direction.OUTBOUND, dst_ip, port)
            if rule is not None and rule.action is RuleAction.DENY:
                logger.debug("Flow %s -> %s:%d denied by %s", source, destination, port, rule.name)
                return False

        if dst is not None:
            segment, micro = dst
            rules = micro.micro_firewall_rules if micro is not None else segment.firewall_rules
            rule = _first_match(rules, Direction.INBOUND, src_ip, port)
            if rule is None or rule.action is RuleAction.DENY:
                logger.debug(
                    "Flow %s -> %s:%d denied by %s",
                    source, destination, port, rule.name if rule else "default",
                )
                return False
        return True

    def summary(self) -> dict[str, object]:
        segments = self.list()
        by_trust: dict[str, int] = {level.value: 0 for level in TrustLevel}
        by_status: dict[str, int] = {status.value: 0 for status in SegmentStatus}
        for segment in segments:
            by_trust[segment.trust_level.value] += 1
            by_status[segment.status.value] += 1
        return {
            "total_segments": len(segments),
            "micro_segments": sum(len(s.micro_segments) for s in segments),
            "by_trust_level": by_trust,
            "by_status": by_status,
            "segments": [
                {
                    "name": s.name,
                    "cidr": s.cidr,
                    "trust_level": s.trust_level.value,
                    "isolation_level": s.isolation_level.value,
                    "status": s.status.value,
                }
                for s in segments
            ],
        }

    def __len__(self) -> int:
        with self._lock:
            return len(self._segments)

    def __contains__(self, name: object) -> bool:
        with self._lock:
            return name in self._segments

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _require(self, name: str) -> NetworkSegment:
        segment = self._segments.get(name)
        if segment is None:
            raise NotFoundError("Segment", name)
        return segment

    @staticmethod
    def _parse_address(address: str) -> ipaddress.IPv4Address | ipaddress.IPv6Address:
        try:
            return ipaddress.ip_address(address)
        except ValueError as exc:
            raise ValidationError(f"Invalid IP address {address!r}.") from exc

    def _publish(self, segment: NetworkSegment) -> None:
        if self._rule_sink is None:
            return
        try:
            self._rule_sink(segment)
        except Exception:
            logger.exception("Rule sink failed to apply rules for segment %s", segment.name)

    def _record(
        self,
        action: str,
        subject: str,
        actor: str,
        severity: Severity = Severity.INFO,
        **details: object,
    ) -> None:
        if self._audit is not None:
            self._audit.record(
                action,
                subject=subject,
                actor=actor,
                severity=severity,
                timestamp=self._clock(),
                **details,
            )
