"""Conditional-access policy records, request context and evaluation results.

Conditions are typed ``{attribute, operator, value}`` predicates over a
nested attribute view of the request context::

    identity.role, identity.trust_score, identity.status, identity.permissions
    device.compliant, device.managed, device.os ...
    network.trust_level, network.segment, network.source_ip ...
    location.country ...
    time.hour, time.weekday, time.weekday_name
    request.permission, request.resource ...

A policy's actions map onto exactly one :class:`Decision`; any action that
is not a decision (``session_timeout``, ``notify`` ...) is carried through
as an obligation.
"""
from __future__ import annotations

import datetime
import ipaddress
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from zero_trust_engine.errors import ValidationError

logger = logging.getLogger(__name__)

ATTRIBUTE_ROOTS = ("identity", "device", "network", "location", "time", "request")

_MISSING = object()


def _utcnow() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc)


def _as_utc(value: datetime.datetime) -> datetime.datetime:
    """Naive timestamps are taken to be UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=datetime.timezone.utc)
    return value


def _parse_ts(value: object) -> datetime.datetime | None:
    if value in (None, ""):
        return None
    if isinstance(value, datetime.datetime):
        return _as_utc(value)
    try:
        return _as_utc(datetime.datetime.fromisoformat(str(value)))
    except ValueError as exc:
        raise ValidationError(f"Invalid timestamp {value!r}: {exc}") from exc


class Decision(str, Enum):
    """Outcome of an access evaluation."""

    ALLOW = "Allow"
    DENY = "Deny"
    STEP_UP = "StepUp"
    MONITOR = "Monitor"

    @property
    def precedence(self) -> int:
        """Higher wins when one policy carries several decision actions."""
        return _DECISION_PRECEDENCE[self]


_DECISION_PRECEDENCE = {
    Decision.ALLOW: 0,
    Decision.MONITOR: 1,
    Decision.STEP_UP: 2,
    Decision.DENY: 3,
}

ACTION_DECISIONS: dict[str, Decision] = {
    "allow": Decision.ALLOW,
    "grant": Decision.ALLOW,
    "monitor": Decision.MONITOR,
    "log": Decision.MONITOR,
    "require_mfa": Decision.STEP_UP,
    "step_up": Decision.STEP_UP,
    "require_compliant_device": Decision.STEP_UP,
    "block": Decision.DENY,
    "deny": Decision.DENY,
}


class PolicyMode(str, Enum):
    """``Report`` policies are evaluated for observability only."""

    REPORT = "Report"
    ENFORCE = "Enforce"
    DISABLED = "Disabled"

    @classmethod
    def parse(cls, value: "str | PolicyMode") -> "PolicyMode":
        if isinstance(value, PolicyMode):
            return value
        for member in cls:
            if value.strip().lower() == member.value.lower():
                return member
        raise ValidationError(f"Unknown policy mode {value!r}.")


class Operator(str, Enum):
    EQ = "eq"
    NE = "ne"
    GT = "gt"
    GTE = "gte"
    LT = "lt"
    LTE = "lte"
    IN = "in"
    NOT_IN = "not_in"
    CONTAINS = "contains"
    NOT_CONTAINS = "not_contains"
    IN_CIDR = "in_cidr"


_LIST_OPERATORS = (Operator.IN, Operator.NOT_IN)


def resolve_attribute(attributes: dict[str, Any], path: str) -> Any:
    """Walk a dotted *path* through nested dictionaries.

    Returns a private sentinel when any segment is missing; callers compare
    against it with :func:`is_missing`.
    """
    current: Any = attributes
    for part in path.split("."):
        if not isinstance(current, dict) or part not in current:
            return _MISSING
        current = current[part]
    return current


def is_missing(value: Any) -> bool:
    return value is _MISSING


@dataclass(frozen=True)
class Condition:
    """A single predicate over the request context.

    A condition on an attribute that is absent from the context never
    matches, whatever the operator.
    """

    attribute: str
    operator: Operator
    value: Any = None

    def __post_init__(self) -> None:
        root = self.attribute.split(".", 1)[0]
        if root not in ATTRIBUTE_ROOTS or "." not in self.attribute:
            raise ValidationError(
                f"Condition attribute {self.attribute!r} must be a dotted path under one of "
                f"{', '.join(ATTRIBUTE_ROOTS)}."
            )
        if not isinstance(self.operator, Operator):
            try:
                object.__setattr__(self, "operator", Operator(str(self.operator).lower()))
            except ValueError as exc:
                raise ValidationError(f"Unknown condition operator {self.operator!r}.") from exc
        if self.operator in _LIST_OPERATORS and not isinstance(self.value, (list, tuple, set, frozenset)):
            raise ValidationError(f"Operator {self.operator.value} requires a list value.")
        if self.operator is Operator.IN_CIDR:
            for cidr in self._cidrs():
                try:
                    ipaddress.ip_network(cidr, strict=False)
                except ValueError as exc:
                    raise ValidationError(f"Invalid CIDR {cidr!r} in condition.") from exc

    def _cidrs(self) -> list[str]:
        if isinstance(self.value, (list, tuple, set, frozenset)):
            return [str(v) for v in self.value]
        return [str(self.value)]

    def matches(self, attributes: dict[str, Any]) -> bool:
        actual = resolve_attribute(attributes, self.attribute)
        if is_missing(actual):
            return False
        op = self.operator
        expected = self.value
        try:
            if op is Operator.EQ:
                return actual == expected
            if op is Operator.NE:
                return actual != expected
            if op is Operator.GT:
                return actual > expected
            if op is Operator.GTE:
                return actual >= expected
            if op is Operator.LT:
                return actual < expected
            if op is Operator.LTE:
                return actual <= expected
            if op is Operator.IN:
                return actual in expected
            if op is Operator.NOT_IN:
                return actual not in expected
            if op is Operator.CONTAINS:
                return expected in actual
            if op is Operator.NOT_CONTAINS:
                return expected not in actual
            if op is Operator.IN_CIDR:
                address = ipaddress.ip_address(str(actual))
                return any(
                    address in ipaddress.ip_network(cidr, strict=False) for cidr in self._cidrs()
                )
        except (TypeError, ValueError):
            logger.debug(
                "Condition %s %s %r not comparable with %r", self.attribute, op.value, expected, actual
            )
            return False
        return False

    def to_dict(self) -> dict[str, object]:
        value = self.value
        if isinstance(value, (set, frozenset, tuple)):
            value = sorted(value, key=str) if isinstance(value, (set, frozenset)) else list(value)
        return {"attribute": self.attribute, "operator": self.operator.value, "value": value}

    @classmethod
    def from_entry(cls, key: str, entry: object) -> "Condition":
        """Build a condition from a map entry.

        ``{"device.compliant": True}`` is shorthand for an ``eq`` condition;
        ``{"hours": {"attribute": "time.hour", "operator": "gte", "value": 8}}``
        names the attribute explicitly. When ``attribute`` is omitted the
        key is used.
        """
        if isinstance(entry, Condition):
            return entry
        if isinstance(entry, dict) and "operator" in entry:
            return cls(
                attribute=str(entry.get("attribute", key)),
                operator=entry["operator"],  # type: ignore[arg-type]
                value=entry.get("value"),
            )
        return cls(attribute=key, operator=Operator.EQ, value=entry)


# ------------------------------------------------------------------
# Principal selectors
# ------------------------------------------------------------------

_SELECTOR_PREFIXES = ("role:", "identity:", "user:")


def validate_selector(selector: str) -> str:
    if selector == "*":
        return selector
    for prefix in _SELECTOR_PREFIXES:
        if selector.startswith(prefix) and len(selector) > len(prefix):
            return selector
    raise ValidationError(
        f"Principal selector {selector!r} must be '*' or start with role:, identity: or user:."
    )


# ------------------------------------------------------------------
# Policy
# ------------------------------------------------------------------


@dataclass
class ConditionalAccessPolicy:
    """A named conditional-access policy.

    Parameters
    ----------
    name:
        Unique policy name; also the tie-breaker between equal priorities.
    conditions:
        Map of dimension label to :class:`Condition`. All must match.
        An empty map matches every request.
    actions:
        Map of action name to parameters. At least one action must map
        to a decision.
    scope:
        Principal selectors: ``"*"``, ``"role:<Role>"``, ``"identity:<id>"``
        or ``"user:<username>"``.
    mode:
        ``Enforce``, ``Report`` or ``Disabled``.
    priority:
        Lower values are evaluated first.
    effective_from, effective_to:
        Optional half-open window ``[from, to)`` during which the policy applies.
    """

    name: str
    conditions: dict[str, Condition] = field(default_factory=dict)
    actions: dict[str, object] = field(default_factory=lambda: {"allow": {}})
    scope: list[str] = field(default_factory=lambda: ["*"])
    mode: PolicyMode = PolicyMode.ENFORCE
    priority: int = 100
    effective_from: datetime.datetime | None = None
    effective_to: datetime.datetime | None = None
    description: str = ""

    def __post_init__(self) -> None:
        if not self.name or not self.name.strip():
            raise ValidationError("Policy name must not be empty.")
        self.mode = PolicyMode.parse(self.mode)
        self.conditions = {k: Condition.from_entry(k, v) for k, v in self.conditions.items()}
        self.actions = {str(k).lower(): v for k, v in self.actions.items()}
        if not any(action in ACTION_DECISIONS for action in self.actions):
            raise ValidationError(
                f"Policy {self.name!r} has no decision action; expected one of "
                f"{', '.join(sorted(ACTION_DECISIONS))}."
            )
        if not self.scope:
            raise ValidationError(f"Policy {self.name!r} must have at least one scope selector.")
        self.scope = [validate_selector(s) for s in self.scope]
        if isinstance(self.priority, bool) or not isinstance(self.priority, int):
            raise ValidationError("Policy priority must be an integer.")
        if self.effective_from is not None:
            self.effective_from = _as_utc(self.effective_from)
        if self.effective_to is not None:
            self.effective_to = _as_utc(self.effective_to)
        if (
            self.effective_from is not None
            and self.effective_to is not None
            and self.effective_from >= self.effective_to
        ):
            raise ValidationError(f"Policy {self.name!r} has an empty effective window.")

    @property
    def decision(self) -> Decision:
        decisions = [ACTION_DECISIONS[a] for a in self.actions if a in ACTION_DECISIONS]
        return max(decisions, key=lambda d: d.precedence)

    @property
    def obligations(self) -> dict[str, object]:
        return {k: v for k, v in self.actions.items() if k not in ACTION_DECISIONS}

    def sort_key(self) -> tuple[int, str]:
        return (self.priority, self.name)

    def in_window(self, now: datetime.datetime) -> bool:
        if self.effective_from is not None and now < self.effective_from:
            return False
        if self.effective_to is not None and now >= self.effective_to:
            return False
        return True

    def applies_to(self, context: "AccessContext") -> bool:
        for selector in self.scope:
            if selector == "*":
                return True
            kind, _, value = selector.partition(":")
            if kind == "role" and context.role == value:
                return True
            if kind == "identity" and context.identity_id == value:
                return True
            if kind == "user" and context.username == value:
                return True
        return False

    def conditions_match(self, attributes: dict[str, Any]) -> bool:
        return all(c.matches(attributes) for c in self.conditions.values())

    def to_dict(self) -> dict[str, object]:
        return {
            "name": self.name,
            "description": self.description,
            "conditions": {k: c.to_dict() for k, c in self.conditions.items()},
            "actions": dict(self.actions),
            "scope": list(self.scope),
            "mode": self.mode.value,
            "priority": self.priority,
            "effective_from": self.effective_from.isoformat() if self.effective_from else None,
            "effective_to": self.effective_to.isoformat() if self.effective_to else None,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ConditionalAccessPolicy":
        """Build a policy from a plain mapping (JSON policy file or snapshot)."""
        if "name" not in data:
            raise ValidationError("Policy definition requires a 'name'.")
        try:
            return cls(
                name=str(data["name"]),
                description=str(data.get("description", "")),
                conditions=dict(data.get("conditions") or {}),
                actions=dict(data.get("actions") or {"allow": {}}),
                scope=list(data.get("scope") or ["*"]),
                mode=data.get("mode", PolicyMode.ENFORCE),
                priority=int(data.get("priority", 100)),
                effective_from=_parse_ts(data.get("effective_from")),
                effective_to=_parse_ts(data.get("effective_to")),
            )
        except (TypeError, AttributeError) as exc:
            raise ValidationError(f"Malformed policy definition: {exc}") from exc


# ------------------------------------------------------------------
# Request context and evaluation result
# ------------------------------------------------------------------


@dataclass
class AccessContext:
    """Everything known about one access attempt.

    ``identity`` fields are normally filled from an :class:`Identity`
    snapshot via :meth:`from_identity`; the other dimensions are free-form
    attribute maps supplied by the caller.
    """

    identity_id: str = ""
    username: str = ""
    role: str = ""
    trust_score: float = 0.0
    identity_status: str = "Active"
    permissions: list[str] = field(default_factory=list)
    requested_permission: str | None = None
    device: dict[str, Any] = field(default_factory=dict)
    network: dict[str, Any] = field(default_factory=dict)
    location: dict[str, Any] = field(default_factory=dict)
    request: dict[str, Any] = field(default_factory=dict)
    timestamp: datetime.datetime = field(default_factory=_utcnow)

    def __post_init__(self) -> None:
        self.timestamp = _as_utc(self.timestamp)

    @classmethod
    def from_identity(cls, identity: Any, **kwargs: Any) -> "AccessContext":
        """Build a context from an identity snapshot plus per-request attributes."""
        now = kwargs.pop("timestamp", None) or _utcnow()
        return cls(
            identity_id=identity.identity_id,
            username=identity.username,
            role=identity.role.value,
            trust_score=identity.trust_score,
            identity_status=identity.status.value,
            permissions=[p.name for p in identity.effective_permissions(now)],
            timestamp=now,
            **kwargs,
        )

    def attributes(self) -> dict[str, Any]:
        request = dict(self.request)
        if self.requested_permission is not None:
            request.setdefault("permission", self.requested_permission)
        return {
            "identity": {
                "id": self.identity_id,
                "username": self.username,
                "role": self.role,
                "trust_score": self.trust_score,
                "status": self.identity_status,
                "permissions": list(self.permissions),
            },
            "device": dict(self.device),
            "network": dict(self.network),
            "location": dict(self.location),
            "time": {
                "hour": self.timestamp.hour,
                "weekday": self.timestamp.weekday(),
                "weekday_name": self.timestamp.strftime("%A"),
                "iso": self.timestamp.isoformat(),
            },
            "request": request,
        }


@dataclass
class AccessEvaluation:
    """Result of :meth:`ConditionalAccessEngine.evaluate`.

    ``decision`` is the binding decision. ``policy`` names the policy that
    produced it, or is None when the default applied. ``report_only``
    lists the decisions Report-mode policies would have made.
    ``computed`` holds the policy outcome when the enforcement mode
    replaced it with a weaker decision.
    """

    decision: Decision
    policy: str | None = None
    obligations: dict[str, object] = field(default_factory=dict)
    report_only: list[tuple[str, Decision]] = field(default_factory=list)
    evaluated: list[str] = field(default_factory=list)
    reason: str = ""
    timestamp: datetime.datetime = field(default_factory=_utcnow)
    computed: Decision | None = None

    @property
    def defaulted(self) -> bool:
        return self.policy is None

    def to_dict(self) -> dict[str, object]:
        return {
            "decision": self.decision.value,
            "policy": self.policy,
            "obligations": dict(self.obligations),
            "report_only": [{"policy": n, "decision": d.value} for n, d in self.report_only],
            "evaluated": list(self.evaluated),
            "reason": self.reason,
            "timestamp": self.timestamp.isoformat(),
            "computed": self.computed.value if self.computed else None,
        }
