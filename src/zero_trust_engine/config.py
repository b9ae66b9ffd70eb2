"""EngineConfig — security level, compliance profile and component settings.

The security level drives the derived settings the orchestrator applies:
default-deny for anything above ``Basic``, a JIT duration ceiling that
shrinks as the level rises, and forensic-grade certificates at
``Maximum`` or whenever an evidence-sensitive framework is selected.
"""
from __future__ import annotations

import json
from enum import Enum
from pathlib import Path

from pydantic import BaseModel, Field, field_validator

from zero_trust_engine.jit.policy import JITPolicy
from zero_trust_engine.network.boundaries import DEFAULT_MANAGEMENT_NETWORKS
from zero_trust_engine.network.models import parse_network


class SecurityLevel(str, Enum):
    BASIC = "Basic"
    STANDARD = "Standard"
    HIGH = "High"
    MAXIMUM = "Maximum"

    @property
    def rank(self) -> int:
        return list(SecurityLevel).index(self)


class ComplianceFramework(str, Enum):
    NIST = "NIST"
    ISO27001 = "ISO27001"
    SOC2 = "SOC2"
    HIPAA = "HIPAA"
    PCI_DSS = "PCI_DSS"
    GDPR = "GDPR"


# Longest JIT grant per security level, in hours.
JIT_CEILING_HOURS: dict[SecurityLevel, int] = {
    SecurityLevel.BASIC: 72,
    SecurityLevel.STANDARD: 24,
    SecurityLevel.HIGH: 8,
    SecurityLevel.MAXIMUM: 4,
}

FORENSIC_FRAMEWORKS = frozenset({ComplianceFramework.HIPAA, ComplianceFramework.PCI_DSS})


class EngineConfig(BaseModel):
    """Top-level engine configuration.

    Parameters
    ----------
    security_level:
        Overall posture; see the module docstring for what it derives.
    compliance_frameworks:
        Frameworks the deployment must satisfy.
    default_deny_all:
        Explicit override of the no-match decision. None derives it from
        the security level.
    jit:
        Base JIT admission policy, tightened per security level.
    sweep_interval_seconds:
        Period of the background JIT expiry sweep.
    audit_log_path:
        JSONL audit log file. None keeps records in memory.
    certificate_store_path:
        Directory for the filesystem certificate store. None keeps
        certificates in memory.
    crl_path:
        JSON file backing the revocation list. None keeps it in memory.
    management_networks:
        Ranges allowed to reach management ports of trusted segments.
    ca_common_name, ca_organization:
        Subject of the internal root certificate authority.
    """

    security_level: SecurityLevel = SecurityLevel.STANDARD
    compliance_frameworks: list[ComplianceFramework] = Field(default_factory=list)
    default_deny_all: bool | None = None
    jit: JITPolicy = Field(default_factory=JITPolicy)
    sweep_interval_seconds: float = Field(default=60.0, gt=0)
    audit_log_path: Path | None = None
    certificate_store_path: Path | None = None
    crl_path: Path | None = None
    management_networks: list[str] = Field(default_factory=lambda: list(DEFAULT_MANAGEMENT_NETWORKS))
    ca_common_name: str = "Zero Trust Root CA"
    ca_organization: str = "Zero Trust Engine"

    model_config = {"extra": "forbid"}

    @field_validator("management_networks")
    @classmethod
    def _check_networks(cls, value: list[str]) -> list[str]:
        for cidr in value:
            parse_network(cidr)
        return value

    @classmethod
    def from_file(cls, path: Path) -> "EngineConfig":
        """Load a configuration from a JSON file.

        Raises
        ------
        pydantic.ValidationError
            If the document has unknown keys or invalid values.
        """
        return cls.model_validate(json.loads(path.read_text(encoding="utf-8")))

    # ------------------------------------------------------------------
    # Derived settings
    # ------------------------------------------------------------------

    def effective_default_deny_all(self) -> bool:
        if self.default_deny_all is not None:
            return self.default_deny_all
        return self.security_level is not SecurityLevel.BASIC

    def jit_policy(self) -> JITPolicy:
        """Return the JIT policy tightened for the security level."""
        approval = True if self.security_level.rank >= SecurityLevel.HIGH.rank else None
        return self.jit.tightened(JIT_CEILING_HOURS[self.security_level], approval_required=approval)

    def forensic_certificates_required(self) -> bool:
        return self.security_level is SecurityLevel.MAXIMUM or bool(
            FORENSIC_FRAMEWORKS.intersection(self.compliance_frameworks)
        )
