"""Tests for zero_trust_engine.permissions — Permission model and PermissionCalculator."""
from __future__ import annotations

import pytest

from zero_trust_engine.errors import ValidationError
from zero_trust_engine.permissions import (
    Permission,
    PermissionCalculator,
    PrivilegeLevel,
    Role,
    Scope,
    Verb,
    permission_names,
    permission_set,
)


@pytest.fixture()
def calculator() -> PermissionCalculator:
    return PermissionCalculator()


def names(perms: list[Permission]) -> list[str]:
    return [p.name for p in perms]


# ---------------------------------------------------------------------------
# Permission model
# ---------------------------------------------------------------------------


class TestPermission:
    def test_parse_splits_domain_and_verb(self) -> None:
        perm = Permission.parse("DataWrite")
        assert perm.domain == "Data"
        assert perm.verb is Verb.WRITE
        assert perm.name == "DataWrite"

    def test_parse_prefers_longest_verb(self) -> None:
        assert Permission.parse("ArtifactExecution").verb is Verb.EXECUTION

    def test_parse_unknown_verb_raises(self) -> None:
        with pytest.raises(ValidationError):
            Permission.parse("DataFrobnicate")

    def test_parse_bare_verb_raises(self) -> None:
        with pytest.raises(ValidationError):
            Permission.parse("Read")

    def test_lowercase_domain_rejected(self) -> None:
        with pytest.raises(ValidationError):
            Permission("data", Verb.READ)

    def test_permission_set_dedupes_and_sorts(self) -> None:
        perms = permission_set(["HuntRead", "DataAccess", "HuntRead"])
        assert names(perms) == ["DataAccess", "HuntRead"]

    def test_permission_names_sorted(self) -> None:
        assert permission_names([Permission.parse("ZoneRead"), Permission.parse("AppRead")]) == [
            "AppRead",
            "ZoneRead",
        ]


class TestParsing:
    @pytest.mark.parametrize("text", ["ReadOnly", "READ_ONLY", "read_only", "read-only"])
    def test_privilege_level_aliases(self, text: str) -> None:
        assert PrivilegeLevel.parse(text) is PrivilegeLevel.READ_ONLY

    def test_unknown_privilege_level(self) -> None:
        with pytest.raises(ValidationError):
            PrivilegeLevel.parse("Godmode")

    def test_role_by_value_or_name(self) -> None:
        assert Role.parse("SOCAnalyst") is Role.SOC_ANALYST
        assert Role.parse("SOC_ANALYST") is Role.SOC_ANALYST

    def test_unknown_role(self) -> None:
        with pytest.raises(ValidationError):
            Role.parse("Janitor")

    def test_scope_case_insensitive(self) -> None:
        assert Scope.parse("evidence") is Scope.EVIDENCE

    def test_level_label(self) -> None:
        assert PrivilegeLevel.ADMINISTRATIVE.label == "Administrative"


# ---------------------------------------------------------------------------
# PermissionCalculator
# ---------------------------------------------------------------------------


class TestCompute:
    def test_read_only_with_data_scope(self, calculator: PermissionCalculator) -> None:
        perms = calculator.compute("ReadOnly", ["Data"], "ReadOnly")
        assert names(perms) == [
            "ArtifactExecution",
            "DataAccess",
            "DataAnalysis",
            "VelociraptorRead",
        ]

    def test_standard_strips_admin_verbs(self, calculator: PermissionCalculator) -> None:
        perms = calculator.compute(Role.ADMINISTRATOR, [], PrivilegeLevel.STANDARD)
        assert names(perms) == [
            "ArtifactExecution",
            "ArtifactModify",
            "VelociraptorRead",
            "VelociraptorWrite",
        ]

    def test_elevated_strips_only_system_and_global_admin(
        self, calculator: PermissionCalculator
    ) -> None:
        perms = names(calculator.compute("Administrator", [], "Elevated"))
        assert "VelociraptorAdmin" in perms
        assert "UserManage" in perms
        assert "SystemAdmin" not in perms
        assert "GlobalAdmin" not in perms

    def test_administrative_strips_nothing(self, calculator: PermissionCalculator) -> None:
        perms = names(calculator.compute("Administrator", [], "Administrative"))
        assert "GlobalAdmin" in perms
        assert "SystemAdmin" in perms

    def test_read_only_strips_write(self, calculator: PermissionCalculator) -> None:
        perms = names(calculator.compute("IncidentResponder", [], "ReadOnly"))
        assert "VelociraptorWrite" not in perms
        assert "HuntWrite" not in perms
        assert "HuntManage" not in perms
        assert "ClientControl" in perms

    def test_gated_scope_ignored_below_elevated(self, calculator: PermissionCalculator) -> None:
        perms = names(calculator.compute("SOCAnalyst", ["Network"], "Standard"))
        assert not any(p.startswith("Network") for p in perms)

    def test_gated_scope_added_at_elevated(self, calculator: PermissionCalculator) -> None:
        perms = names(calculator.compute("SOCAnalyst", ["Network"], "Elevated"))
        assert "NetworkConfigure" in perms
        assert "NetworkRead" in perms

    def test_explicit_grant_survives_filter(self, calculator: PermissionCalculator) -> None:
        perms = names(calculator.compute("ReadOnly", [], "ReadOnly", ["DataWrite"]))
        assert "DataWrite" in perms

    def test_denial_wins_over_grant(self, calculator: PermissionCalculator) -> None:
        perms = names(
            calculator.compute("ReadOnly", [], "ReadOnly", ["DataWrite"], ["DataWrite"])
        )
        assert "DataWrite" not in perms

    def test_denial_removes_base_permission(self, calculator: PermissionCalculator) -> None:
        perms = names(calculator.compute("ReadOnly", [], "Standard", [], ["VelociraptorRead"]))
        assert perms == ["ArtifactExecution"]

    def test_deterministic(self, calculator: PermissionCalculator) -> None:
        first = calculator.compute("DFIRAnalyst", ["Evidence", "Hunts"], "Standard")
        second = calculator.compute("DFIRAnalyst", ["Hunts", "Evidence"], "Standard")
        assert first == second

    def test_output_sorted(self, calculator: PermissionCalculator) -> None:
        perms = names(calculator.compute("ForensicInvestigator", ["Reports"], "Elevated"))
        assert perms == sorted(perms)

    def test_unknown_scope_raises(self, calculator: PermissionCalculator) -> None:
        with pytest.raises(ValidationError):
            calculator.compute("ReadOnly", ["Moon"], "Standard")

    def test_unknown_permission_raises(self, calculator: PermissionCalculator) -> None:
        with pytest.raises(ValidationError):
            calculator.compute("ReadOnly", [], "Standard", ["not-a-permission"])


class TestExplain:
    def test_breakdown_records_stripped(self, calculator: PermissionCalculator) -> None:
        breakdown = calculator.explain("Administrator", [], "Standard")
        assert "GlobalAdmin" in names(list(breakdown.stripped))
        assert breakdown.privilege_level is PrivilegeLevel.STANDARD

    def test_breakdown_to_dict(self, calculator: PermissionCalculator) -> None:
        data = calculator.explain("ReadOnly", ["Data"], "ReadOnly").to_dict()
        assert data["role"] == "ReadOnly"
        assert data["scopes"] == ["Data"]
        assert data["privilege_level"] == "ReadOnly"
        assert data["effective"] == [
            "ArtifactExecution",
            "DataAccess",
            "DataAnalysis",
            "VelociraptorRead",
        ]

    def test_base_permissions(self, calculator: PermissionCalculator) -> None:
        assert names(calculator.base_permissions("ReadOnly")) == [
            "ArtifactExecution",
            "VelociraptorRead",
        ]

    def test_custom_role_table(self) -> None:
        custom = PermissionCalculator(role_permissions={Role.READ_ONLY: frozenset({"ZoneRead"})})
        assert names(custom.compute("ReadOnly")) == ["ZoneRead"]
