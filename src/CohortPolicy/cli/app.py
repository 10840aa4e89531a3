"""CLI application entrypoint built with Typer."""

from __future__ import annotations

import json
import os
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Callable, Dict, Iterator, List, Optional

import typer
from pydantic import ValidationError

from CohortPolicy.cohorts.membership import MembershipRefresher
from CohortPolicy.cohorts.metrics import ContributorPerformance, InMemoryMetricSource
from CohortPolicy.cohorts.models import Cohort, CohortDraft, CohortStatus
from CohortPolicy.exceptions import CohortPolicyError, CohortValidationError
from CohortPolicy.policy.models import Scalar
from CohortPolicy.policy.resolution import Contributor, Precomputed, ResolutionEngine
from CohortPolicy.policy.store import PolicyLinkStore
from CohortPolicy.scopes import PolicyKind, step_id_for

from .config import ResolvedConfig, load_cli_config, write_current_context
from .logging import configure_logging, progress_spinner
from .runtime import CommandRuntime, build_runtime, read_document

CLI_VERSION = "0.1.0"

app = typer.Typer(help="Cohort-driven daily limit and QC sampling policies")
context_app = typer.Typer(help="Manage CLI contexts")
cohort_app = typer.Typer(help="Define, inspect and archive cohorts")
policy_app = typer.Typer(help="Link cohorts to policies and manage defaults")
members_app = typer.Typer(help="Recalculate cached cohort membership")

app.add_typer(context_app, name="context")
app.add_typer(cohort_app, name="cohort")
app.add_typer(policy_app, name="policy")
app.add_typer(members_app, name="members")


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


@contextmanager
def _reporting_errors() -> Iterator[None]:
    """Turn domain and input failures into ``[error]`` lines and exit code 1."""

    try:
        yield
    except CohortValidationError as exc:
        typer.echo(f"[error] {exc.__class__.__name__}: {len(exc.violations)} problem(s)")
        for violation in exc.violations:
            typer.echo(f"  - {violation.field}: {violation.message}")
        raise typer.Exit(code=1)
    except CohortPolicyError as exc:
        typer.echo(f"[error] {exc}")
        raise typer.Exit(code=1)
    except ValidationError as exc:
        typer.echo(f"[error] invalid input: {exc.error_count()} problem(s)")
        for error in exc.errors():
            location = ".".join(str(part) for part in error["loc"])
            typer.echo(f"  - {location}: {error['msg']}")
        raise typer.Exit(code=1)


def _parse_kind(raw: str) -> PolicyKind:
    try:
        return PolicyKind.parse(raw)
    except ValueError as exc:
        raise typer.BadParameter(f"Unknown policy '{raw}' (use daily_limit or qc_sampling)") from exc


def _parse_scalar(raw: str) -> Scalar:
    try:
        return int(raw)
    except ValueError:
        pass
    try:
        return float(raw)
    except ValueError as exc:
        raise typer.BadParameter(f"'{raw}' is not a number") from exc


def _load_draft(path: Path) -> CohortDraft:
    data = read_document(path)
    if not isinstance(data, dict):
        raise typer.BadParameter(f"{path} must contain a mapping of cohort fields")
    conditions = []
    for index, item in enumerate(data.get("conditions") or [], start=1):
        if isinstance(item, dict):
            item = {"condition_id": f"cond-{index}", **item}
        conditions.append(item)
    return CohortDraft.model_validate({**data, "conditions": conditions})


def _records(path: Path, key: str) -> List[Any]:
    data = read_document(path)
    if isinstance(data, dict):
        data = data.get(key)
    if not isinstance(data, list):
        raise typer.BadParameter(f"{path} must contain a list of {key}")
    return data


def _echo_json(payload: Any) -> None:
    typer.echo(json.dumps(payload, indent=2, sort_keys=True, default=str))


def _cohort_line(cohort: Cohort) -> str:
    return (
        f"{cohort.cohort_id}\t{cohort.status.value}\t{cohort.step_id}\t"
        f"{cohort.member_count}\t{cohort.name}"
    )


# ---------------------------------------------------------------------------
# Typer callback
# ---------------------------------------------------------------------------


@app.callback()
def main_callback(
    ctx: typer.Context,
    config: Optional[Path] = typer.Option(None, "--config", help="Path to CLI configuration file (TOML or JSON)."),
    context: Optional[str] = typer.Option(None, "--context", "-c", help="Context name to activate for this invocation."),
    data_root: Optional[Path] = typer.Option(None, "--data-root", help="Override the data root for this invocation."),
    log_format: Optional[str] = typer.Option(None, "--log-format", help="Log format (text or json)."),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable verbose logging."),
) -> None:
    """Top-level callback to resolve configuration and configure logging."""

    overrides = {
        "context": context,
        "data_root": data_root,
        "log_format": log_format,
        "verbose": verbose,
    }
    overrides = {k: v for k, v in overrides.items() if v not in {None, False, ""}}
    try:
        resolved = load_cli_config(config, overrides=overrides)
    except ValueError as exc:
        typer.echo(f"[error] {exc}")
        raise typer.Exit(code=1)

    log_path = resolved.data_root / "logs" / "cli.log"
    logger = configure_logging(log_path, resolved.log_format, resolved.verbose, resolved.context.log_level)
    ctx.obj = {"config": resolved, "logger": logger}


# ---------------------------------------------------------------------------
# Context commands
# ---------------------------------------------------------------------------


@context_app.command("list")
def context_list(ctx: typer.Context) -> None:
    """List contexts with their data root; the active one is starred."""

    resolved: ResolvedConfig = ctx.obj["config"]
    for name, context in sorted(resolved.contexts.items()):
        active = name == resolved.context.name
        data_root = resolved.data_root if active else context.data_root
        typer.echo(f"{'*' if active else ' '} {name}\t{data_root}")


@context_app.command("use")
def context_use(ctx: typer.Context, name: str = typer.Argument(..., help="Context to make current.")) -> None:
    """Persist the context later invocations start from."""

    resolved: ResolvedConfig = ctx.obj["config"]
    if name not in resolved.contexts:
        raise typer.BadParameter(f"Unknown context '{name}'")
    write_current_context(os.environ, name)
    typer.echo(f"[ok] current context is {name}")


@context_app.command("show")
def context_show(
    ctx: typer.Context,
    name: Optional[str] = typer.Argument(None, help="Context to show; defaults to the active one."),
) -> None:
    """Show the cohort scopes and policy defaults a context applies."""

    resolved: ResolvedConfig = ctx.obj["config"]
    target = name or resolved.context.name
    if target not in resolved.contexts:
        raise typer.BadParameter(f"Unknown context '{target}'")
    selected = resolved.context if target == resolved.context.name else resolved.contexts[target]
    _echo_json(
        {
            "name": target,
            "active": target == resolved.context.name,
            "data_root": str(selected.data_root),
            "log_level": selected.log_level,
            "config_file": str(resolved.config_path) if resolved.config_path else None,
            "scopes": {
                PolicyKind.DAILY_LIMIT.value: sorted(selected.scopes.steps_for(PolicyKind.DAILY_LIMIT)),
                PolicyKind.QC_SAMPLING.value: sorted(selected.scopes.steps_for(PolicyKind.QC_SAMPLING)),
            },
            "defaults": {kind.value: selected.default_for(kind) for kind in PolicyKind},
        }
    )


# ---------------------------------------------------------------------------
# Cohort commands
# ---------------------------------------------------------------------------


@cohort_app.command("list")
def cohort_list(
    ctx: typer.Context,
    step: Optional[str] = typer.Option(None, "--step", help="Only cohorts of this workflow step."),
    status: Optional[CohortStatus] = typer.Option(None, "--status", help="Only live or archived cohorts."),
) -> None:
    """List cohorts as tab-separated id, status, step, members and name."""

    registry = build_runtime(ctx).registry
    cohorts = registry.list_by_step(step) if step else registry.all()
    if status is not None:
        cohorts = [cohort for cohort in cohorts if cohort.status is status]
    if not cohorts:
        typer.echo("(no cohorts)")
        return
    for cohort in sorted(cohorts, key=lambda item: item.cohort_id):
        typer.echo(_cohort_line(cohort))


@cohort_app.command("show")
def cohort_show(ctx: typer.Context, cohort_id: str = typer.Argument(...)) -> None:
    """Show one cohort definition and its cached members."""

    registry = build_runtime(ctx).registry
    with _reporting_errors():
        cohort = registry.get(cohort_id)
        payload = cohort.model_dump(mode="json")
        payload["window"] = cohort.date_range.display
        payload["members"] = sorted(registry.members(cohort_id))
    _echo_json(payload)


@cohort_app.command("create")
def cohort_create(
    ctx: typer.Context,
    definition: Path = typer.Argument(..., help="YAML or JSON cohort definition."),
    cohort_id: Optional[str] = typer.Option(None, "--id", help="Explicit cohort identifier."),
) -> None:
    """Create a live cohort from a definition file."""

    runtime = build_runtime(ctx)
    with _reporting_errors():
        cohort = runtime.registry.create(_load_draft(definition), cohort_id=cohort_id)
    typer.echo(f"[ok] created {cohort.cohort_id} ({cohort.name}) for {cohort.step_id}")


@cohort_app.command("update")
def cohort_update(
    ctx: typer.Context,
    cohort_id: str = typer.Argument(...),
    definition: Path = typer.Argument(..., help="YAML or JSON cohort definition."),
) -> None:
    """Replace the definition of a live cohort."""

    runtime = build_runtime(ctx)
    with _reporting_errors():
        cohort = runtime.registry.update(cohort_id, _load_draft(definition))
    typer.echo(f"[ok] updated {cohort.cohort_id}")


@cohort_app.command("archive")
def cohort_archive(ctx: typer.Context, cohort_id: str = typer.Argument(...)) -> None:
    """Archive a cohort; its membership and policy links are kept."""

    runtime = build_runtime(ctx)
    with _reporting_errors():
        runtime.registry.archive(cohort_id)
    typer.echo(f"[ok] archived {cohort_id}")


@cohort_app.command("unarchive")
def cohort_unarchive(ctx: typer.Context, cohort_id: str = typer.Argument(...)) -> None:
    """Return an archived cohort to live status."""

    runtime = build_runtime(ctx)
    with _reporting_errors():
        runtime.registry.unarchive(cohort_id)
    typer.echo(f"[ok] unarchived {cohort_id}")


# ---------------------------------------------------------------------------
# Policy commands
# ---------------------------------------------------------------------------


@policy_app.command("show")
def policy_show(ctx: typer.Context, kind: str = typer.Argument(..., help="daily_limit or qc_sampling")) -> None:
    """Show the committed configuration of a policy."""

    policy_kind = _parse_kind(kind)
    store = build_runtime(ctx).policy_store(policy_kind)
    report = store.validate_all(store.committed)
    payload: Dict[str, Any] = store.committed.model_dump(mode="json")
    payload["archived_links"] = list(report.archived_links)
    payload["archived_warning"] = store.has_archived_links()
    _echo_json(payload)


def _edit_policy(
    ctx: typer.Context,
    kind: str,
    verb: str,
    subject: str,
    edit: Callable[[PolicyLinkStore], object],
) -> None:
    runtime: CommandRuntime = build_runtime(ctx)
    store = runtime.policy_store(_parse_kind(kind))
    with _reporting_errors():
        edit(store)
        with progress_spinner(f"Saving {store.kind.label.lower()}", enabled=runtime.show_progress):
            store.save()
    typer.echo(f"[ok] {verb} {subject}")


@policy_app.command("link")
def policy_link(ctx: typer.Context, kind: str, cohort_id: str, scalar: str) -> None:
    """Attach a cohort override to a policy."""

    value = _parse_scalar(scalar)
    _edit_policy(ctx, kind, "linked", cohort_id, lambda store: store.add_override(cohort_id, value))


@policy_app.command("set-link")
def policy_set_link(ctx: typer.Context, kind: str, cohort_id: str, scalar: str) -> None:
    """Change the scalar of an existing override."""

    value = _parse_scalar(scalar)
    _edit_policy(ctx, kind, "updated", cohort_id, lambda store: store.update_override(cohort_id, value))


@policy_app.command("unlink")
def policy_unlink(ctx: typer.Context, kind: str, cohort_id: str) -> None:
    """Remove a cohort override from a policy."""

    _edit_policy(ctx, kind, "unlinked", cohort_id, lambda store: store.remove_override(cohort_id))


@policy_app.command("set-default")
def policy_set_default(ctx: typer.Context, kind: str, scalar: str) -> None:
    """Set the value used when no linked cohort applies."""

    value = _parse_scalar(scalar)
    _edit_policy(ctx, kind, "default set to", str(value), lambda store: store.set_default(value))


def _toggle_policy(ctx: typer.Context, kind: str, enabled: bool) -> None:
    policy_kind = _parse_kind(kind)
    if not policy_kind.toggleable:
        raise typer.BadParameter(f"{policy_kind.label} is always enabled")
    verb = "enabled" if enabled else "disabled"
    _edit_policy(ctx, kind, verb, policy_kind.value, lambda store: store.set_enabled(enabled))


@policy_app.command("enable")
def policy_enable(ctx: typer.Context, kind: str = typer.Argument("daily_limit")) -> None:
    """Turn a policy back on with its saved overrides."""

    _toggle_policy(ctx, kind, True)


@policy_app.command("disable")
def policy_disable(ctx: typer.Context, kind: str = typer.Argument("daily_limit")) -> None:
    """Stop enforcing a policy; its overrides are kept for later."""

    _toggle_policy(ctx, kind, False)


@policy_app.command("validate")
def policy_validate(ctx: typer.Context, kind: str) -> None:
    """Validate the committed configuration against the current cohorts."""

    store = build_runtime(ctx).policy_store(_parse_kind(kind))
    report = store.validate_all(store.committed)
    _echo_json(report.to_dict())
    if not report.ok:
        raise typer.Exit(code=1)


@policy_app.command("linkable")
def policy_linkable(
    ctx: typer.Context,
    kind: str,
    search: str = typer.Option("", "--search", help="Case-insensitive name filter."),
) -> None:
    """List live, in-scope cohorts not yet linked to the policy."""

    runtime = build_runtime(ctx)
    store = runtime.policy_store(_parse_kind(kind))
    cohorts = runtime.registry.linkable(store.kind, search=search, exclude=store.committed.linked_ids())
    if not cohorts:
        typer.echo("(no linkable cohorts)")
        return
    for cohort in cohorts:
        typer.echo(_cohort_line(cohort))


# ---------------------------------------------------------------------------
# Membership and resolution
# ---------------------------------------------------------------------------


@members_app.command("refresh")
def members_refresh(
    ctx: typer.Context,
    step: str = typer.Argument(..., help="Workflow step name or id."),
    performance: Path = typer.Argument(..., help="YAML or JSON list of contributor performance records."),
) -> None:
    """Re-derive membership of live cohorts of a step from performance data."""

    runtime = build_runtime(ctx)
    step_id = step_id_for(step)
    with _reporting_errors():
        records = [ContributorPerformance.model_validate(item) for item in _records(performance, "records")]
        source = InMemoryMetricSource(records)
        refresher = MembershipRefresher(runtime.registry, source, sink=runtime.sink, telemetry=runtime.telemetry)
        with progress_spinner(f"Refreshing cohorts of {step_id}", enabled=runtime.show_progress):
            summary = refresher.refresh(step_id, source.contributors(step_id))
    _echo_json(summary.to_dict())


@app.command()
def resolve(
    ctx: typer.Context,
    kind: str = typer.Argument(..., help="daily_limit or qc_sampling"),
    contributors: Path = typer.Argument(..., help="YAML or JSON list of emails or {email, cohort_ids} entries."),
    as_json: bool = typer.Option(False, "--json", help="Emit full resolution records."),
) -> None:
    """Print the effective policy value for each contributor."""

    runtime = build_runtime(ctx)
    policy_kind = _parse_kind(kind)
    store = runtime.policy_store(policy_kind)
    registry = runtime.registry
    entries: List[Contributor] = []
    for item in _records(contributors, "contributors"):
        if isinstance(item, str):
            item = {"email": item}
        if not isinstance(item, dict) or not item.get("email"):
            raise typer.BadParameter(f"Contributor entries need an email: {item!r}")
        email = str(item["email"]).strip().lower()
        cohort_ids = item.get("cohort_ids")
        if cohort_ids is not None and not isinstance(cohort_ids, list):
            raise typer.BadParameter(f"cohort_ids of {email} must be a list, got {cohort_ids!r}")
        membership = Precomputed(
            [str(cohort_id) for cohort_id in cohort_ids] if cohort_ids is not None else registry.memberships_for(email)
        )
        entries.append(Contributor(email=email, membership=membership))

    engine = ResolutionEngine(scopes=registry.scopes, telemetry=runtime.telemetry)
    with _reporting_errors():
        resolutions = engine.resolve_many(policy_kind, entries, store.committed, registry.snapshot())
    if as_json:
        _echo_json([resolution.to_dict() for resolution in resolutions])
        return
    for resolution in resolutions:
        if not resolution.enabled:
            typer.echo(f"{resolution.email}\tunlimited\tdisabled")
            continue
        source = "default" if resolution.used_default else ",".join(o.cohort_id for o in resolution.applied)
        typer.echo(f"{resolution.email}\t{resolution.value}\t{source}")


@app.command()
def version() -> None:
    """Print the CLI version."""

    typer.echo(CLI_VERSION)


def main() -> None:
    """Entrypoint for the CLI."""

    app()
