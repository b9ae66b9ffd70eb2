"""CLI entry point for zero-trust-engine.

Invoked as::

    zero-trust [OPTIONS] COMMAND [ARGS]...

or, during development::

    python -m zero_trust_engine.cli.main

Every command loads the engine from the ``--state-file`` snapshot, runs,
and writes the snapshot back when it changed something.

Commands
--------
init                          Create a new engine state file
status                        Summarise every component
identity create|show|list     Manage identities
access set-least-privilege    Recompute an identity's permissions
access evaluate               Evaluate one access attempt
jit request|approve|deny|revoke|sweep|list
policy set|list               Manage conditional-access policies
cert issue|validate|revoke    Manage certificates
segment create|list           Manage network segments
enforce MODE                  Change the enforcement mode
"""
from __future__ import annotations

import json
import logging
import sys
from pathlib import Path
from typing import Any, NoReturn

import click
from rich.console import Console
from rich.table import Table

from zero_trust_engine.config import ComplianceFramework, EngineConfig, SecurityLevel
from zero_trust_engine.errors import NotFoundError, OperationResult, StorageError, ZeroTrustError
from zero_trust_engine.identity.models import Identity, IdentityStatus
from zero_trust_engine.orchestrator import EnforcementMode, ZeroTrustOrchestrator
from zero_trust_engine.persistence import load_snapshot, save_snapshot

console = Console()

_DECISION_STYLES = {"Allow": "green", "Monitor": "cyan", "StepUp": "yellow", "Deny": "red"}
_OUTCOME_STYLES = {"Passed": "green", "Warning": "yellow", "Failed": "red"}


# ------------------------------------------------------------------
# Root group
# ------------------------------------------------------------------


@click.group()
@click.version_option(package_name="zero-trust-engine")
@click.option(
    "--state-file",
    type=click.Path(dir_okay=False, path_type=Path),
    default=Path("zero-trust-state.json"),
    envvar="ZERO_TRUST_STATE",
    show_default=True,
    help="JSON snapshot holding the engine state.",
)
@click.option(
    "--log-level",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
    default="WARNING",
    show_default=True,
)
@click.pass_context
def cli(ctx: click.Context, state_file: Path, log_level: str) -> None:
    """Zero-trust access control: identities, JIT access, policies, certificates and segments."""
    logging.basicConfig(level=log_level.upper(), format="%(levelname)s %(name)s: %(message)s")
    ctx.obj = {"state_file": state_file}


@cli.command(name="init")
@click.option(
    "--security-level",
    type=click.Choice([level.value for level in SecurityLevel]),
    default=None,
    help="Overall security posture.",
)
@click.option(
    "--framework",
    "-f",
    multiple=True,
    type=click.Choice([f.value for f in ComplianceFramework]),
    help="Compliance framework (repeatable).",
)
@click.option(
    "--config",
    "config_file",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    default=None,
    help="JSON configuration file.",
)
@click.option("--force", is_flag=True, help="Overwrite an existing state file.")
@click.pass_context
def init_command(
    ctx: click.Context,
    security_level: str | None,
    framework: tuple[str, ...],
    config_file: Path | None,
    force: bool,
) -> None:
    """Create a new engine state file."""
    state_file: Path = ctx.obj["state_file"]
    if state_file.exists() and not force:
        _fail(f"{state_file} already exists; use --force to overwrite it.")

    try:
        config = EngineConfig.from_file(config_file) if config_file else EngineConfig()
    except (OSError, ValueError) as exc:
        _fail(f"cannot load configuration: {exc}")
    updates: dict[str, Any] = {}
    if security_level:
        updates["security_level"] = SecurityLevel(security_level)
    if framework:
        updates["compliance_frameworks"] = [ComplianceFramework(f) for f in framework]
    if config.audit_log_path is None:
        updates["audit_log_path"] = state_file.with_name(state_file.stem + "-audit.jsonl")
    config = config.model_copy(update=updates)

    orchestrator = ZeroTrustOrchestrator(config)
    _save(ctx, orchestrator)
    console.print(f"[green]Initialised[/green] {state_file}")
    console.print(f"  Security level:  {config.security_level.value}")
    console.print(f"  Default deny:    {config.effective_default_deny_all()}")
    console.print(f"  Baseline rules:  {len(orchestrator.access)}")
    console.print(f"  Audit log:       {config.audit_log_path}")


@cli.command(name="status")
@click.pass_context
def status_command(ctx: click.Context) -> None:
    """Summarise every component."""
    status = _load(ctx).status()
    table = Table(title="Zero-Trust Engine", show_header=True)
    table.add_column("Component", style="cyan")
    table.add_column("State")
    for key, value in status.items():
        if isinstance(value, dict):
            value = ", ".join(f"{k}={v}" for k, v in value.items())
        elif isinstance(value, list):
            value = ", ".join(str(v) for v in value) or "(none)"
        table.add_row(key.replace("_", " "), str(value))
    console.print(table)


# ------------------------------------------------------------------
# identity command group
# ------------------------------------------------------------------


@cli.group(name="identity")
def identity_group() -> None:
    """Manage identities."""


@identity_group.command(name="create")
@click.argument("username")
@click.option("--role", "-r", required=True, help="Role, e.g. DFIRAnalyst.")
@click.option("--display-name", "-n", default="", help="Human-readable name.")
@click.option("--scope", "-s", multiple=True, help="Scope to widen permissions with (repeatable).")
@click.option("--privilege-level", "-p", default="Standard", show_default=True)
@click.option("--grant", multiple=True, help="Explicit permission to add (repeatable).")
@click.option("--deny", multiple=True, help="Permission to deny (repeatable).")
@click.option("--actor", default="cli", show_default=True)
@click.pass_context
def identity_create_command(
    ctx: click.Context,
    username: str,
    role: str,
    display_name: str,
    scope: tuple[str, ...],
    privilege_level: str,
    grant: tuple[str, ...],
    deny: tuple[str, ...],
    actor: str,
) -> None:
    """Create identity USERNAME and compute its permissions."""
    orchestrator = _load(ctx)
    identity = _unwrap(
        orchestrator.create_identity(
            username,
            role,
            display_name=display_name,
            scopes=scope,
            privilege_level=privilege_level,
            explicit_permissions=grant,
            denied_permissions=deny,
            actor=actor,
        )
    )
    _save(ctx, orchestrator)
    console.print(f"[green]Created[/green] identity [bold]{identity.username}[/bold]")
    console.print(f"  ID:          {identity.identity_id}")
    console.print(f"  Role:        {identity.role.value}")
    console.print(f"  Permissions: {', '.join(p.name for p in identity.permissions) or '(none)'}")


@identity_group.command(name="show")
@click.argument("identity_ref")
@click.pass_context
def identity_show_command(ctx: click.Context, identity_ref: str) -> None:
    """Show an identity by ID or username."""
    identity = _resolve_identity(_load(ctx), identity_ref)
    console.print(f"[bold]{identity.username}[/bold] ({identity.identity_id})")
    console.print(f"  Role:         {identity.role.value}")
    console.print(f"  Status:       {identity.status.value}")
    console.print(f"  Trust score:  {identity.trust_score:.1f}")
    console.print(f"  Privilege:    {identity.privilege_level.label}")
    console.print(f"  Permissions:  {', '.join(p.name for p in identity.effective_permissions()) or '(none)'}")
    if identity.active_jit is not None:
        grant = identity.active_jit
        console.print(f"  Active JIT:   {grant.access_type.value} until {grant.expires_at}")
    console.print(f"  Auth methods: {', '.join(m.kind.value for m in identity.auth_methods)}")
    console.print(f"  Trail:        {len(identity.audit_trail)} entries")


@identity_group.command(name="list")
@click.option("--role", default=None, help="Only identities with this role.")
@click.option(
    "--status",
    type=click.Choice([s.value for s in IdentityStatus]),
    default=None,
)
@click.pass_context
def identity_list_command(ctx: click.Context, role: str | None, status: str | None) -> None:
    """List identities."""
    orchestrator = _load(ctx)
    try:
        identities = orchestrator.list_identities(
            role=role, status=IdentityStatus(status) if status else None
        )
    except ZeroTrustError as exc:
        _fail(str(exc))

    if not identities:
        console.print("[yellow]No identities.[/yellow]")
        return

    table = Table(title="Identities", show_header=True)
    table.add_column("Username", style="cyan")
    table.add_column("Role")
    table.add_column("Status", justify="center")
    table.add_column("Trust", justify="right")
    table.add_column("Permissions", justify="right")
    for identity in identities:
        table.add_row(
            identity.username,
            identity.role.value,
            identity.status.value,
            f"{identity.trust_score:.1f}",
            str(len(identity.effective_permissions())),
        )
    console.print(table)


# ------------------------------------------------------------------
# access command group
# ------------------------------------------------------------------


@cli.group(name="access")
def access_group() -> None:
    """Least-privilege permissions and access evaluation."""


@access_group.command(name="set-least-privilege")
@click.argument("identity_ref")
@click.option("--scope", "-s", multiple=True)
@click.option("--privilege-level", "-p", default="Standard", show_default=True)
@click.option("--grant", multiple=True)
@click.option("--deny", multiple=True)
@click.option("--actor", default="cli", show_default=True)
@click.pass_context
def set_least_privilege_command(
    ctx: click.Context,
    identity_ref: str,
    scope: tuple[str, ...],
    privilege_level: str,
    grant: tuple[str, ...],
    deny: tuple[str, ...],
    actor: str,
) -> None:
    """Recompute the permissions of IDENTITY_REF."""
    orchestrator = _load(ctx)
    identity = _resolve_identity(orchestrator, identity_ref)
    updated = _unwrap(
        orchestrator.set_least_privilege_access(
            identity.identity_id, scope, privilege_level, grant, deny, actor=actor
        )
    )
    _save(ctx, orchestrator)
    console.print(f"[green]Updated[/green] {updated.username} ({updated.privilege_level.label})")
    for permission in updated.permissions:
        console.print(f"  {permission.name}")


@access_group.command(name="evaluate")
@click.argument("identity_ref")
@click.option("--permission", default=None, help="Permission being requested.")
@click.option("--device", default=None, help="JSON object of device attributes.")
@click.option("--network", default=None, help="JSON object of network attributes.")
@click.option("--location", default=None, help="JSON object of location attributes.")
@click.option("--json", "as_json", is_flag=True, help="Print the evaluation as JSON.")
@click.pass_context
def evaluate_command(
    ctx: click.Context,
    identity_ref: str,
    permission: str | None,
    device: str | None,
    network: str | None,
    location: str | None,
    as_json: bool,
) -> None:
    """Evaluate one access attempt by IDENTITY_REF."""
    orchestrator = _load(ctx)
    identity = _resolve_identity(orchestrator, identity_ref)
    try:
        evaluation = orchestrator.evaluate_access(
            identity.identity_id,
            requested_permission=permission,
            device=_json_option("--device", device),
            network=_json_option("--network", network),
            location=_json_option("--location", location),
        )
    except ZeroTrustError as exc:
        _fail(str(exc))

    if as_json:
        click.echo(json.dumps(evaluation.to_dict(), indent=2))
        return
    style = _DECISION_STYLES.get(evaluation.decision.value, "white")
    console.print(f"Decision: [{style}]{evaluation.decision.value}[/{style}]")
    console.print(f"  Policy: {evaluation.policy or '(default)'}")
    console.print(f"  Reason: {evaluation.reason}")
    if evaluation.computed is not None:
        console.print(f"  Computed before enforcement mode: {evaluation.computed.value}")
    for name, decision in evaluation.report_only:
        console.print(f"  Report-only {name}: {decision.value}")


# ------------------------------------------------------------------
# jit command group
# ------------------------------------------------------------------


@cli.group(name="jit")
def jit_group() -> None:
    """Just-in-time elevated access."""


@jit_group.command(name="request")
@click.argument("identity_ref")
@click.option("--type", "access_type", required=True, help="Access type, e.g. Investigation.")
@click.option("--justification", "-j", required=True)
@click.option("--hours", type=int, required=True, help="Duration in hours (1-72).")
@click.option("--permission", multiple=True, help="Extra permission (repeatable).")
@click.option("--no-approval", is_flag=True, help="Activate immediately if policy allows.")
@click.option("--emergency", is_flag=True, help="Override policy violations.")
@click.option("--by", "requested_by", default="cli", show_default=True)
@click.pass_context
def jit_request_command(
    ctx: click.Context,
    identity_ref: str,
    access_type: str,
    justification: str,
    hours: int,
    permission: tuple[str, ...],
    no_approval: bool,
    emergency: bool,
    requested_by: str,
) -> None:
    """Request JIT access for IDENTITY_REF."""
    orchestrator = _load(ctx)
    identity = _resolve_identity(orchestrator, identity_ref)
    grant = _unwrap(
        orchestrator.request_jit_access(
            identity.identity_id,
            access_type,
            justification,
            hours,
            permissions=permission,
            approval_required=False if no_approval else None,
            emergency_override=emergency,
            requested_by=requested_by,
        )
    )
    _save(ctx, orchestrator)
    console.print(f"[green]Request {grant.status.value}[/green] {grant.request_id}")
    if grant.expires_at is not None:
        console.print(f"  Expires: {grant.expires_at.isoformat()}")


@jit_group.command(name="approve")
@click.argument("request_id")
@click.option("--approver", required=True)
@click.option("--reason", default="")
@click.pass_context
def jit_approve_command(ctx: click.Context, request_id: str, approver: str, reason: str) -> None:
    """Approve a pending JIT request."""
    orchestrator = _load(ctx)
    grant = _unwrap(orchestrator.approve_jit_access(request_id, approver, reason))
    _save(ctx, orchestrator)
    console.print(f"[green]Granted[/green] {grant.request_id} until {grant.expires_at}")


@jit_group.command(name="deny")
@click.argument("request_id")
@click.option("--approver", required=True)
@click.option("--reason", default="")
@click.pass_context
def jit_deny_command(ctx: click.Context, request_id: str, approver: str, reason: str) -> None:
    """Deny a pending JIT request."""
    orchestrator = _load(ctx)
    grant = _unwrap(orchestrator.deny_jit_access(request_id, approver, reason))
    _save(ctx, orchestrator)
    console.print(f"[yellow]Denied[/yellow] {grant.request_id}")


@jit_group.command(name="revoke")
@click.argument("request_id")
@click.option("--actor", default="cli", show_default=True)
@click.option("--reason", default="")
@click.pass_context
def jit_revoke_command(ctx: click.Context, request_id: str, actor: str, reason: str) -> None:
    """Revoke an active JIT grant."""
    orchestrator = _load(ctx)
    grant = _unwrap(orchestrator.revoke_jit_access(request_id, actor, reason))
    _save(ctx, orchestrator)
    console.print(f"[yellow]Revoked[/yellow] {grant.request_id}")


@jit_group.command(name="sweep")
@click.pass_context
def jit_sweep_command(ctx: click.Context) -> None:
    """Expire every JIT grant that is past its expiry time."""
    orchestrator = _load(ctx)
    expired = orchestrator.sweep_jit()
    _save(ctx, orchestrator)
    console.print(f"Expired {len(expired)} grant(s).")
    for grant in expired:
        console.print(f"  {grant.request_id} ({grant.identity_id})")


@jit_group.command(name="list")
@click.option("--identity", "identity_ref", default=None)
@click.pass_context
def jit_list_command(ctx: click.Context, identity_ref: str | None) -> None:
    """List JIT requests, newest first."""
    orchestrator = _load(ctx)
    identity_id = _resolve_identity(orchestrator, identity_ref).identity_id if identity_ref else None
    grants = orchestrator.jit.list(identity_id=identity_id)
    if not grants:
        console.print("[yellow]No JIT requests.[/yellow]")
        return
    table = Table(title="JIT Requests", show_header=True)
    table.add_column("Request ID", style="cyan")
    table.add_column("Identity")
    table.add_column("Type")
    table.add_column("Status", justify="center")
    table.add_column("Expires")
    for grant in grants:
        table.add_row(
            grant.request_id,
            grant.identity_id,
            grant.access_type.value,
            grant.status.value,
            grant.expires_at.isoformat() if grant.expires_at else "-",
        )
    console.print(table)


# ------------------------------------------------------------------
# policy command group
# ------------------------------------------------------------------


@cli.group(name="policy")
def policy_group() -> None:
    """Conditional-access policies."""


@policy_group.command(name="set")
@click.argument("policy_file", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option("--actor", default="cli", show_default=True)
@click.pass_context
def policy_set_command(ctx: click.Context, policy_file: Path, actor: str) -> None:
    """Add or replace the policies defined in POLICY_FILE (object or list)."""
    try:
        data = json.loads(policy_file.read_text(encoding="utf-8"))
    except json.JSONDecodeError as exc:
        _fail(f"{policy_file} is not valid JSON: {exc}")
    definitions = data if isinstance(data, list) else [data]

    orchestrator = _load(ctx)
    for definition in definitions:
        policy = _unwrap(orchestrator.set_conditional_access_policy(definition, actor=actor))
        console.print(
            f"[green]Set[/green] policy [bold]{policy.name}[/bold] "
            f"({policy.mode.value}, priority {policy.priority}, {policy.decision.value})"
        )
    _save(ctx, orchestrator)


@policy_group.command(name="list")
@click.pass_context
def policy_list_command(ctx: click.Context) -> None:
    """List policies in evaluation order."""
    orchestrator = _load(ctx)
    policies = orchestrator.access.list()
    if not policies:
        console.print("[yellow]No policies.[/yellow]")
        return
    table = Table(title="Conditional Access Policies", show_header=True)
    table.add_column("Priority", justify="right")
    table.add_column("Name", style="cyan")
    table.add_column("Mode", justify="center")
    table.add_column("Decision")
    table.add_column("Scope")
    for policy in policies:
        table.add_row(
            str(policy.priority),
            policy.name,
            policy.mode.value,
            policy.decision.value,
            ", ".join(policy.scope),
        )
    console.print(table)


# ------------------------------------------------------------------
# cert command group
# ------------------------------------------------------------------


@cli.group(name="cert")
def cert_group() -> None:
    """Certificate lifecycle."""


@cert_group.command(name="issue")
@click.argument("subject")
@click.option("--type", "cert_type", default="Client", show_default=True)
@click.option("--usage", multiple=True, help="Key usage (repeatable). Defaults per type.")
@click.option("--days", type=int, default=365, show_default=True)
@click.option("--key-size", type=int, default=2048, show_default=True)
@click.option("--hash", "hash_algorithm", default="SHA256", show_default=True)
@click.option("--forensic", is_flag=True, help="Issue with the forensic-grade profile.")
@click.option("--issuer", default=None, help="Thumbprint of the issuing authority.")
@click.option("--san", multiple=True, help="Subject alternative name (repeatable).")
@click.option("--owner", default=None, help="Owning identity ID.")
@click.option("--out", type=click.Path(dir_okay=False, path_type=Path), default=None, help="Write the PEM here.")
@click.option("--actor", default="cli", show_default=True)
@click.pass_context
def cert_issue_command(
    ctx: click.Context,
    subject: str,
    cert_type: str,
    usage: tuple[str, ...],
    days: int,
    key_size: int,
    hash_algorithm: str,
    forensic: bool,
    issuer: str | None,
    san: tuple[str, ...],
    owner: str | None,
    out: Path | None,
    actor: str,
) -> None:
    """Issue a certificate for SUBJECT (e.g. "CN=collector01, O=DFIR")."""
    orchestrator = _load(ctx)
    cert = _unwrap(
        orchestrator.issue_certificate(
            subject,
            cert_type=cert_type,
            key_usage=usage,
            validity_days=days,
            key_size=key_size,
            hash_algorithm=hash_algorithm,
            forensic_grade=forensic,
            issuer_thumbprint=issuer,
            subject_alt_names=san,
            owner_id=owner,
            actor=actor,
        )
    )
    _save(ctx, orchestrator)
    if out is not None:
        out.write_bytes(cert.cert_pem)
    console.print(f"[green]Issued[/green] {cert.cert_type.value} certificate [bold]{cert.subject}[/bold]")
    console.print(f"  Thumbprint: {cert.thumbprint}")
    console.print(f"  Serial:     {cert.serial_number}")
    console.print(f"  Valid:      {cert.not_before.isoformat()} .. {cert.not_after.isoformat()}")
    console.print(f"  Forensic:   {cert.forensic_grade}")


@cert_group.command(name="validate")
@click.argument("thumbprint")
@click.option(
    "--depth",
    type=click.Choice(["Basic", "Extended", "Forensic"]),
    default="Basic",
    show_default=True,
)
@click.pass_context
def cert_validate_command(ctx: click.Context, thumbprint: str, depth: str) -> None:
    """Validate the chain of THUMBPRINT."""
    orchestrator = _load(ctx)
    try:
        report = orchestrator.validate_certificate_chain(thumbprint, depth)
    except ZeroTrustError as exc:
        _fail(str(exc))

    table = Table(title=f"Chain Validation — {depth}", show_header=True)
    table.add_column("Test", style="cyan")
    table.add_column("Outcome", justify="center")
    table.add_column("Certificate")
    table.add_column("Message")
    for finding in report.findings:
        style = _OUTCOME_STYLES.get(finding.outcome.value, "white")
        table.add_row(
            finding.test,
            f"[{style}]{finding.outcome.value}[/{style}]",
            finding.thumbprint[:16],
            finding.message,
        )
    console.print(table)
    console.print(f"Status: [bold]{report.status.value}[/bold]")
    if not report.valid:
        sys.exit(2)


@cert_group.command(name="revoke")
@click.argument("thumbprint")
@click.option("--reason", default="Unspecified", show_default=True)
@click.option("--actor", default="cli", show_default=True)
@click.pass_context
def cert_revoke_command(ctx: click.Context, thumbprint: str, reason: str, actor: str) -> None:
    """Revoke THUMBPRINT permanently."""
    orchestrator = _load(ctx)
    cert = _unwrap(orchestrator.revoke_certificate(thumbprint, reason, actor=actor))
    _save(ctx, orchestrator)
    reason_text = cert.revocation_reason.value if cert.revocation_reason else reason
    console.print(f"[yellow]Revoked[/yellow] {cert.thumbprint} ({reason_text})")


# ------------------------------------------------------------------
# segment command group
# ------------------------------------------------------------------


@cli.group(name="segment")
def segment_group() -> None:
    """Network trust boundaries."""


@segment_group.command(name="create")
@click.argument("name")
@click.argument("cidr")
@click.option("--trust", "trust_level", required=True, help="Untrusted, Limited, Trusted or HighlyTrusted.")
@click.option("--isolation", "isolation_level", default="Basic", show_default=True)
@click.option("--description", default="")
@click.option("--actor", default="cli", show_default=True)
@click.pass_context
def segment_create_command(
    ctx: click.Context,
    name: str,
    cidr: str,
    trust_level: str,
    isolation_level: str,
    description: str,
    actor: str,
) -> None:
    """Create segment NAME covering CIDR."""
    orchestrator = _load(ctx)
    segment = _unwrap(
        orchestrator.create_network_segment(name, cidr, trust_level, isolation_level, description, actor)
    )
    _save(ctx, orchestrator)
    console.print(f"[green]Created[/green] segment [bold]{segment.name}[/bold] ({segment.cidr})")
    console.print(f"  Status:           {segment.status.value}")
    console.print(f"  Firewall rules:   {len(segment.firewall_rules)}")
    console.print(f"  Monitoring rules: {len(segment.monitoring_rules)}")


@segment_group.command(name="list")
@click.pass_context
def segment_list_command(ctx: click.Context) -> None:
    """List segments."""
    segments = _load(ctx).get_trust_boundaries()
    if not segments:
        console.print("[yellow]No segments.[/yellow]")
        return
    table = Table(title="Trust Boundaries", show_header=True)
    table.add_column("Name", style="cyan")
    table.add_column("CIDR")
    table.add_column("Trust")
    table.add_column("Isolation")
    table.add_column("Status", justify="center")
    table.add_column("Micro", justify="right")
    for segment in segments:
        table.add_row(
            segment.name,
            segment.cidr,
            segment.trust_level.value,
            segment.isolation_level.value,
            segment.status.value,
            str(len(segment.micro_segments)),
        )
    console.print(table)


# ------------------------------------------------------------------
# enforce
# ------------------------------------------------------------------


@cli.command(name="enforce")
@click.argument("mode", type=click.Choice([m.value for m in EnforcementMode], case_sensitive=False))
@click.option("--actor", default="cli", show_default=True)
@click.pass_context
def enforce_command(ctx: click.Context, mode: str, actor: str) -> None:
    """Change the enforcement mode (Disabled, Transitioning, Enforcing)."""
    orchestrator = _load(ctx)
    new_mode = _unwrap(orchestrator.enable_enforcement(mode, actor=actor))
    _save(ctx, orchestrator)
    console.print(f"Enforcement mode: [bold]{new_mode.value}[/bold]")


# ------------------------------------------------------------------
# Helpers
# ------------------------------------------------------------------


def _fail(message: str) -> NoReturn:
    console.print(f"[red]Error:[/red] {message}")
    sys.exit(1)


def _load(ctx: click.Context) -> ZeroTrustOrchestrator:
    state_file: Path = ctx.obj["state_file"]
    if not state_file.exists():
        _fail(f"{state_file} does not exist; run 'zero-trust init' first.")
    try:
        return load_snapshot(state_file)
    except StorageError as exc:
        _fail(str(exc))


def _save(ctx: click.Context, orchestrator: ZeroTrustOrchestrator) -> None:
    try:
        save_snapshot(orchestrator, ctx.obj["state_file"])
    except StorageError as exc:
        _fail(str(exc))


def _unwrap(result: OperationResult[Any]) -> Any:
    if not result.ok:
        for violation in result.details.get("violations", []):  # type: ignore[union-attr]
            console.print(f"  - {violation}")
        _fail(result.message)
    return result.value


def _resolve_identity(orchestrator: ZeroTrustOrchestrator, ref: str) -> Identity:
    if ref in orchestrator.identities:
        return orchestrator.get_identity(ref)
    try:
        return orchestrator.identities.get_by_username(ref)
    except NotFoundError as exc:
        _fail(str(exc))


def _json_option(name: str, value: str | None) -> dict[str, Any] | None:
    if value is None:
        return None
    try:
        parsed = json.loads(value)
    except json.JSONDecodeError as exc:
        _fail(f"{name} is not valid JSON: {exc}")
    if not isinstance(parsed, dict):
        _fail(f"{name} must be a JSON object.")
    return parsed


if __name__ == "__main__":
    cli()
