"""Tagged capability model for permissions.

A :class:`Permission` is a ``(domain, verb)`` pair. Its canonical name is the
concatenation of both parts (``Data`` + ``Write`` -> ``"DataWrite"``), which
keeps the names familiar to operators while letting the least-privilege
filter work on the verb instead of on string patterns.
"""
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum, IntEnum
from typing import Iterable

from zero_trust_engine.errors import ValidationError


class Verb(str, Enum):
    """The action half of a permission."""

    READ = "Read"
    WRITE = "Write"
    MODIFY = "Modify"
    DELETE = "Delete"
    ADMIN = "Admin"
    MANAGE = "Manage"
    CONFIGURE = "Configure"
    CONTROL = "Control"
    EXECUTION = "Execution"
    COLLECTION = "Collection"
    ACCESS = "Access"
    ANALYSIS = "Analysis"
    EXPORT = "Export"
    MONITOR = "Monitor"


class PrivilegeLevel(IntEnum):
    """Requested privilege level. Higher values strip fewer permissions."""

    READ_ONLY = 0
    STANDARD = 1
    ELEVATED = 2
    ADMINISTRATIVE = 3

    @classmethod
    def parse(cls, value: "str | PrivilegeLevel") -> "PrivilegeLevel":
        """Accept ``"ReadOnly"``, ``"READ_ONLY"``, ``"read_only"`` or a member."""
        if isinstance(value, PrivilegeLevel):
            return value
        key = value.replace("-", "_").strip()
        aliases = {
            "readonly": cls.READ_ONLY,
            "read_only": cls.READ_ONLY,
            "standard": cls.STANDARD,
            "elevated": cls.ELEVATED,
            "administrative": cls.ADMINISTRATIVE,
        }
        try:
            return aliases[key.lower()]
        except KeyError:
            raise ValidationError(f"Unknown privilege level {value!r}.") from None

    @property
    def label(self) -> str:
        return {
            PrivilegeLevel.READ_ONLY: "ReadOnly",
            PrivilegeLevel.STANDARD: "Standard",
            PrivilegeLevel.ELEVATED: "Elevated",
            PrivilegeLevel.ADMINISTRATIVE: "Administrative",
        }[self]


class Role(str, Enum):
    """Built-in identity roles."""

    DFIR_ANALYST = "DFIRAnalyst"
    FORENSIC_INVESTIGATOR = "ForensicInvestigator"
    INCIDENT_RESPONDER = "IncidentResponder"
    SOC_ANALYST = "SOCAnalyst"
    ADMINISTRATOR = "Administrator"
    READ_ONLY = "ReadOnly"
    SYSTEM_ACCOUNT = "SystemAccount"

    @classmethod
    def parse(cls, value: "str | Role") -> "Role":
        if isinstance(value, Role):
            return value
        for member in cls:
            if value in (member.value, member.name):
                return member
        raise ValidationError(f"Unknown role {value!r}.")


class Scope(str, Enum):
    """Functional area a least-privilege request can be widened to."""

    DATA = "Data"
    ARTIFACTS = "Artifacts"
    HUNTS = "Hunts"
    CLIENTS = "Clients"
    EVIDENCE = "Evidence"
    REPORTS = "Reports"
    SYSTEM = "System"
    NETWORK = "Network"

    @classmethod
    def parse(cls, value: "str | Scope") -> "Scope":
        if isinstance(value, Scope):
            return value
        for member in cls:
            if member.value.lower() == value.strip().lower():
                return member
        raise ValidationError(f"Unknown scope {value!r}.")


# Verbs ordered longest-first so that parsing picks the most specific suffix.
_VERBS_BY_LENGTH = sorted(Verb, key=lambda v: len(v.value), reverse=True)


@dataclass(frozen=True)
class Permission:
    """A single capability identified by its canonical name.

    Parameters
    ----------
    domain:
        Resource area the permission applies to (``"Velociraptor"``, ``"Data"``).
    verb:
        The action granted.
    """

    domain: str
    verb: Verb

    def __post_init__(self) -> None:
        if not self.domain or not self.domain[0].isupper() or not self.domain.isalnum():
            raise ValidationError(
                f"Permission domain must be a capitalised alphanumeric word, got {self.domain!r}."
            )

    @property
    def name(self) -> str:
        return f"{self.domain}{self.verb.value}"

    def __str__(self) -> str:
        return self.name

    @classmethod
    def parse(cls, name: "str | Permission") -> "Permission":
        """Parse a canonical name such as ``"DataWrite"`` into a Permission.

        Raises
        ------
        ValidationError
            If the name does not end in a known verb or has no domain.
        """
        if isinstance(name, Permission):
            return name
        text = name.strip()
        for verb in _VERBS_BY_LENGTH:
            if text.endswith(verb.value) and len(text) > len(verb.value):
                return cls(domain=text[: -len(verb.value)], verb=verb)
        raise ValidationError(f"Permission {name!r} does not end in a known verb.")


def permission_set(items: Iterable["str | Permission"]) -> list[Permission]:
    """Parse, deduplicate, and sort permissions by canonical name."""
    unique = {Permission.parse(item) for item in items}
    return sorted(unique, key=lambda p: p.name)


def permission_names(items: Iterable[Permission]) -> list[str]:
    return [p.name for p in sorted(set(items), key=lambda p: p.name)]
