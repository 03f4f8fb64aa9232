"""Directory user operator CLI (userop).

One-shot access to the user lifecycle, plus the long-running operator loop.

Usage:
    userop apply alice.yaml           # Converge one declaration
    userop plan alice.yaml            # Show the calls apply would issue
    userop read eu-west-1_abc/alice   # Show the user's current state
    userop import eu-west-1_abc/alice # Adopt an existing user
    userop delete eu-west-1_abc/alice # Delete a user
    userop run                        # Run the reconciliation loop
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

import click

from . import __version__, directory
from .config import GroupFailurePolicy
from .errors import PartialUpdateError, UserOperatorError
from .identity import ResourceIdentity, decode_identity
from .lifecycle import UserLifecycle
from .models import UserSpec
from .spec_loader import SpecLoadError, load_spec
from .state import DesiredState, ReadResult
from .state_store import StateStore, StateStoreError

# Errors reported as a plain message instead of a traceback
HANDLED_ERRORS = (UserOperatorError, SpecLoadError, StateStoreError)


class CliContext:
    """Options shared by every command; the directory client is built lazily."""

    def __init__(
        self,
        region: str | None,
        endpoint_url: str | None,
        state_dir: Path | None,
        group_failure_policy: GroupFailurePolicy,
    ) -> None:
        self.region = region
        self.endpoint_url = endpoint_url
        self.state_dir = state_dir
        self.group_failure_policy = group_failure_policy
        self._lifecycle: UserLifecycle | None = None

    @property
    def lifecycle(self) -> UserLifecycle:
        if self._lifecycle is None:
            if not self.region:
                raise click.ClickException(
                    "No region configured. Pass --region or set AWS_REGION."
                )
            client = directory.create_directory_client(self.region, self.endpoint_url)
            self._lifecycle = UserLifecycle(
                client, group_failure_policy=self.group_failure_policy
            )
        return self._lifecycle

    @property
    def store(self) -> StateStore | None:
        if self.state_dir is None:
            return None
        return StateStore(self.state_dir)


def echo_json(data: Any) -> None:
    click.echo(json.dumps(data, indent=2, sort_keys=True, default=str))


def read_result_to_dict(result: ReadResult) -> dict[str, Any]:
    """Render a read result for output."""
    data: dict[str, Any] = {"id": str(result.identity), "state": result.state.value}
    if result.observed is not None:
        data["enabled"] = result.observed.enabled
        data["status"] = result.observed.status.value
        data["userAttributes"] = [
            {"name": a.name, "value": a.value} for a in result.observed.user_attributes
        ]
        data["groups"] = sorted(result.observed.groups)
    if result.group_listing is not None:
        data["groupListing"] = result.group_listing.status.value
        if result.group_listing.error:
            data["groupListingError"] = result.group_listing.error
    return data


def declaration_to_dict(desired: DesiredState) -> dict[str, Any]:
    """Render an imported user as a declaration that ``apply`` accepts."""
    return {
        "username": desired.username,
        "userPoolId": desired.pool_id,
        "userAttributes": [{"name": a.name, "value": a.value} for a in desired.user_attributes],
        "groups": sorted(desired.groups),
    }


def resolve_target(
    store: StateStore | None,
    name: str,
    spec: UserSpec,
) -> tuple[ResourceIdentity, UserSpec | None]:
    """Identity and previous declaration for ``spec``.

    With a state store the stored record wins; without one the declaration
    names the user and the current remote state stands in for the previous
    declaration.
    """
    if store is not None:
        stored = store.load(name)
        if stored is not None:
            return stored.identity, stored.applied
    return ResourceIdentity(pool_id=spec.user_pool_id, username=spec.username), None


def parse_identity(raw: str) -> ResourceIdentity:
    try:
        return decode_identity(raw)
    except UserOperatorError as e:
        raise click.BadParameter(str(e), param_hint="ID") from e


# =============================================================================
# Main CLI Group
# =============================================================================


@click.group()
@click.version_option(version=__version__, prog_name="userop")
@click.option(
    "--region",
    envvar=["AWS_REGION", "AWS_DEFAULT_REGION"],
    help="Region of the user pool (default: $AWS_REGION).",
)
@click.option(
    "--endpoint-url",
    envvar="ENDPOINT_URL",
    help="Directory endpoint override, e.g. a local emulator.",
)
@click.option(
    "--state-dir",
    type=click.Path(file_okay=False, path_type=Path),
    help="Remember identities and applied declarations in this directory.",
)
@click.option(
    "--group-failure-policy",
    type=click.Choice([p.value for p in GroupFailurePolicy]),
    default=GroupFailurePolicy.CONTINUE.value,
    envvar="GROUP_FAILURE_POLICY",
    show_default=True,
    help="Keep going or stop when a group call fails during an update.",
)
@click.pass_context
def cli(
    ctx: click.Context,
    region: str | None,
    endpoint_url: str | None,
    state_dir: Path | None,
    group_failure_policy: str,
) -> None:
    """Directory user operator CLI (userop).

    Reconcile user-pool users against YAML declarations.

    \b
    Quick Start:
        userop plan alice.yaml    # What would change?
        userop apply alice.yaml   # Make it so
    """
    ctx.obj = CliContext(
        region=region,
        endpoint_url=endpoint_url,
        state_dir=state_dir,
        group_failure_policy=GroupFailurePolicy(group_failure_policy),
    )


# =============================================================================
# Lifecycle Commands
# =============================================================================


@cli.command()
@click.argument("spec_file", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.pass_obj
def apply(obj: CliContext, spec_file: Path) -> None:
    """Create, update or replace the user declared in SPEC_FILE."""
    try:
        spec = load_spec(spec_file)
        store = obj.store
        identity, previous = resolve_target(store, spec_file.stem, spec)
        result = obj.lifecycle.apply(identity, previous, spec)
        if store is not None:
            store.save(spec_file.stem, result.identity, spec)
    except PartialUpdateError as e:
        if e.result is not None:
            echo_json(read_result_to_dict(e.result))
        raise click.ClickException(str(e)) from e
    except HANDLED_ERRORS as e:
        raise click.ClickException(str(e)) from e

    echo_json({"action": result.plan.action.value, **read_result_to_dict(result.read)})


@cli.command()
@click.argument("spec_file", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.pass_obj
def plan(obj: CliContext, spec_file: Path) -> None:
    """Show the remote calls apply would issue for SPEC_FILE."""
    try:
        spec = load_spec(spec_file)
        identity, previous = resolve_target(obj.store, spec_file.stem, spec)
        current = obj.lifecycle.read(identity)
        planned = obj.lifecycle.plan(identity, previous, spec, current)
    except HANDLED_ERRORS as e:
        raise click.ClickException(str(e)) from e

    echo_json(
        {
            "id": str(identity),
            "action": planned.action.value,
            "calls": list(planned.calls),
            "reasons": list(planned.reasons),
        }
    )


@cli.command()
@click.argument("raw_id", metavar="ID")
@click.pass_obj
def read(obj: CliContext, raw_id: str) -> None:
    """Show the current state of user ID (user_pool_id/username)."""
    identity = parse_identity(raw_id)
    try:
        result = obj.lifecycle.read(identity)
    except HANDLED_ERRORS as e:
        raise click.ClickException(str(e)) from e
    echo_json(read_result_to_dict(result))


@cli.command(name="import")
@click.argument("raw_id", metavar="ID")
@click.option("--name", help="Record the user in the state store under this spec name.")
@click.pass_obj
def import_(obj: CliContext, raw_id: str, name: str | None) -> None:
    """Adopt existing user ID and print its declaration."""
    try:
        imported = obj.lifecycle.import_user(raw_id)
        store = obj.store
        if name and store is not None:
            # No applied declaration yet: the next apply starts from what was observed
            store.save(name, imported.read.identity, None)
    except HANDLED_ERRORS as e:
        raise click.ClickException(str(e)) from e
    echo_json(declaration_to_dict(imported.desired))


@cli.command()
@click.argument("raw_id", metavar="ID")
@click.option("--name", help="Also forget this spec name in the state store.")
@click.pass_obj
def delete(obj: CliContext, raw_id: str, name: str | None) -> None:
    """Delete user ID. Succeeds if the user is already gone."""
    identity = parse_identity(raw_id)
    try:
        deleted = obj.lifecycle.delete(identity)
        store = obj.store
        if name and store is not None:
            store.delete(name)
    except HANDLED_ERRORS as e:
        raise click.ClickException(str(e)) from e

    if deleted:
        click.secho(f"✓ Deleted {identity}", fg="green")
    else:
        click.echo(f"{identity} was already absent")


# =============================================================================
# Operator Commands
# =============================================================================


@cli.command()
def run() -> None:
    """Run the reconciliation loop (configured from the environment)."""
    from .main import run as run_operator

    run_operator()


def main() -> None:
    """Entry point for the CLI."""
    cli()


if __name__ == "__main__":
    main()
