"""
Primary Typer application for the StoreBridge CLI.

Store catalogue commands read capability descriptors only and never touch a
backend. ``app`` commands run through the same pipeline as any other caller, so
they need an API key (``--api-key`` or ``STOREBRIDGE_API_KEY``) and count
against its quota.
"""

from __future__ import annotations

import asyncio
import json
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

import typer

from ..adapters import AdapterError
from ..auth.records import Plan
from ..config import load_secrets
from ..core.context import GatewayContext
from ..core.logging import configure_logging
from ..pipeline import API_KEY_PARAM, is_error_payload

app = typer.Typer(
    no_args_is_help=True,
    add_completion=False,
    help=(
        "Publish app builds to Google Play, the App Store and Chinese Android markets through one interface.\n\n"
        "Command groups:\n"
        "- stores: inspect registered stores and their capabilities.\n"
        "- keys: issue API keys.\n"
        "- app: upload, submit and track builds."
    ),
)
stores_app = typer.Typer(help="Inspect registered stores and their capability descriptors.")
app.add_typer(stores_app, name="stores")
keys_app = typer.Typer(help="Issue API keys for the gateway.")
app.add_typer(keys_app, name="keys")
app_app = typer.Typer(help="Upload builds, submit them for review and check status.")
app.add_typer(app_app, name="app")

_PLATFORMS = ("android", "ios", "harmonyos")
_YES_NO = {True: "yes", False: "no"}


@app.callback(invoke_without_command=False)
def main(
    ctx: typer.Context,
    secrets_path: Optional[Path] = typer.Option(
        None,
        "--secrets",
        help="Secrets TOML file. Defaults to STOREBRIDGE_SECRETS_PATH or .secrets/secret.toml.",
        exists=True,
        dir_okay=False,
        readable=True,
    ),
    api_key: Optional[str] = typer.Option(None, "--api-key", help="API key presented with every app command."),
    log_level: Optional[str] = typer.Option(None, "--log-level", help="Logging level (DEBUG, INFO, WARNING...)."),
) -> None:
    """
    Configure the gateway context.

    The callback stores the context in Typer's state so child commands can
    retrieve it via :class:`typer.Context`.
    """

    configure_logging(log_level, force=log_level is not None)
    try:
        secrets = load_secrets(strict=secrets_path is not None, path=secrets_path)
    except (OSError, ValueError) as exc:
        typer.echo(f"Failed to load secrets: {exc}", err=True)
        raise typer.Exit(code=1) from exc

    state = ctx.ensure_object(dict)
    state["context"] = GatewayContext.build_default(secrets)
    state["api_key"] = api_key


def _require_context(ctx: typer.Context) -> GatewayContext:
    state = ctx.ensure_object(dict)
    context = state.get("context")
    if not isinstance(context, GatewayContext):
        raise typer.Exit(code=2)
    return context


def _echo_json(payload: Mapping[str, Any]) -> None:
    typer.echo(json.dumps(payload, ensure_ascii=False, indent=2, default=str))


def _invoke(ctx: typer.Context, operation: str, params: Dict[str, Any]) -> Dict[str, Any]:
    context = _require_context(ctx)
    api_key = ctx.ensure_object(dict).get("api_key")
    if api_key:
        params[API_KEY_PARAM] = api_key
    try:
        result = asyncio.run(context.invoke(operation, params))
    except AdapterError as exc:
        payload = exc.to_payload() if hasattr(exc, "to_payload") else {"error": str(exc), "code": type(exc).__name__}
        _echo_json(payload)
        raise typer.Exit(code=1) from exc
    _echo_json(result)
    if is_error_payload(result):
        raise typer.Exit(code=1)
    return result


@stores_app.command("list")
def stores_list(
    ctx: typer.Context,
    platform: Optional[str] = typer.Option(None, "--platform", "-p", help="Filter by platform (android, ios, harmonyos)."),
    output_json: bool = typer.Option(False, "--json", help="Emit the catalogue in JSON format."),
) -> None:
    """List registered stores with their main capabilities."""

    if platform is not None and platform not in _PLATFORMS:
        raise typer.BadParameter(f"Unknown platform '{platform}'. Choose from: {', '.join(_PLATFORMS)}.")
    context = _require_context(ctx)
    entries = [caps for caps in context.registry.all_capabilities() if platform is None or platform in caps.platforms]
    if output_json:
        _echo_json({"stores": [caps.to_dict() for caps in entries], "count": len(entries)})
        return
    if not entries:
        typer.echo("No stores match the requested filters.")
        raise typer.Exit(code=0)

    header = f"{'ID':<12} {'Files':<14} {'Upload':<6} {'Listing':<7} {'Review':<6} {'Auth':<6} Name"
    typer.echo(header)
    typer.echo("-" * len(header))
    for caps in entries:
        files = ",".join(caps.supported_file_types)
        typer.echo(
            f"{caps.store_id:<12} {files:<14} {_YES_NO[caps.supports_upload]:<6} {_YES_NO[caps.supports_listing]:<7} "
            f"{_YES_NO[caps.supports_review]:<6} {caps.auth_method.value:<6} {caps.name}"
        )


@stores_app.command("describe")
def stores_describe(
    ctx: typer.Context,
    store_id: str = typer.Argument(..., help="Identifier of the store."),
    output_json: bool = typer.Option(False, "--json", help="Emit the descriptor in JSON format."),
) -> None:
    """Show the capability descriptor of one store."""

    context = _require_context(ctx)
    caps = context.registry.capabilities_of(store_id)
    if caps is None:
        typer.echo(f"Store '{store_id}' is not registered.", err=True)
        raise typer.Exit(code=1)

    if output_json:
        _echo_json(caps.to_dict())
        return

    typer.echo(f"ID: {caps.store_id}")
    typer.echo(f"Name: {caps.name}")
    typer.echo(f"Platforms: {', '.join(caps.platforms)}")
    typer.echo(f"File Types: {', '.join(caps.supported_file_types)}")
    typer.echo(f"Max File Size: {caps.max_file_size_mb} MB")
    typer.echo(f"Authentication: {caps.auth_method.value}")
    typer.echo(f"Upload: {_YES_NO[caps.supports_upload]}")
    typer.echo(f"Listing: {_YES_NO[caps.supports_listing]}")
    typer.echo(f"Review Submission: {_YES_NO[caps.supports_review]}")
    typer.echo(f"Analytics: {_YES_NO[caps.supports_analytics]}")
    typer.echo(f"Rollback: {_YES_NO[caps.supports_rollback]}")
    typer.echo(f"Staged Rollout: {_YES_NO[caps.supports_staged_rollout]}")
    if caps.requires_icp:
        typer.echo("Requires ICP filing: yes")


@keys_app.command("generate")
def keys_generate(
    ctx: typer.Context,
    plan: str = typer.Option(Plan.FREE.value, "--plan", help="Plan tier: free, pro, team or enterprise."),
    email: Optional[str] = typer.Option(None, "--email", help="Owner email recorded with the key."),
) -> None:
    """
    Generate a new API key.

    The key is printed once together with the ``[[api_keys]]`` block that
    provisions it in the secrets file; only its hash is ever stored.
    """

    try:
        tier = Plan(plan)
    except ValueError as exc:
        raise typer.BadParameter(f"Unknown plan '{plan}'. Choose from: {', '.join(item.value for item in Plan)}.") from exc

    context = _require_context(ctx)
    generated = asyncio.run(context.keys.generate_key(tier, email=email))
    typer.echo(f"API key: {generated.api_key}")
    typer.echo("Store it now; it cannot be shown again.")
    typer.echo("")
    typer.echo("[[api_keys]]")
    typer.echo(f'id = "{generated.key_id}"')
    typer.echo(f'key_hash = "{generated.key_hash}"')
    typer.echo(f'plan = "{generated.plan.value}"')
    if email:
        typer.echo(f'email = "{email}"')


@app_app.command("status")
def app_status(
    ctx: typer.Context,
    app_id: str = typer.Argument(..., help="Store-side application identifier (package name, app id...)."),
    store: str = typer.Option(..., "--store", "-s", help="Store identifier."),
) -> None:
    """Report review and live status of an app."""

    _invoke(ctx, "app.status", {"store": store, "app_id": app_id})


@app_app.command("upload")
def app_upload(
    ctx: typer.Context,
    file_path: Path = typer.Argument(..., help="Build artifact (apk, aab, ipa or hap)."),
    app_id: str = typer.Option(..., "--app-id", help="Store-side application identifier."),
    store: str = typer.Option(..., "--store", "-s", help="Store identifier."),
    file_type: Optional[str] = typer.Option(None, "--file-type", help="Artifact type. Defaults to the file extension."),
    changelog: Optional[str] = typer.Option(None, "--changelog", help="Release notes sent with the build where supported."),
) -> None:
    """Validate and upload a build artifact."""

    params: Dict[str, Any] = {"store": store, "app_id": app_id, "file_path": str(file_path)}
    if file_type:
        params["file_type"] = file_type
    if changelog:
        params["changelog"] = changelog
    _invoke(ctx, "app.upload", params)


@app_app.command("submit")
def app_submit(
    ctx: typer.Context,
    app_id: str = typer.Argument(..., help="Store-side application identifier."),
    store: str = typer.Option(..., "--store", "-s", help="Store identifier."),
    release_id: Optional[str] = typer.Option(None, "--release-id", help="Release or build to submit, where the store needs one."),
) -> None:
    """Submit the current release for review."""

    _invoke(ctx, "app.submit", {"store": store, "app_id": app_id, "release_id": release_id})


@app_app.command("reviews")
def app_reviews(
    ctx: typer.Context,
    app_id: str = typer.Argument(..., help="Store-side application identifier."),
    store: str = typer.Option(..., "--store", "-s", help="Store identifier."),
    limit: int = typer.Option(20, "--limit", min=1, help="Maximum number of reviews to fetch."),
) -> None:
    """List recent user reviews."""

    _invoke(ctx, "app.reviews", {"store": store, "app_id": app_id, "limit": limit})


@app_app.command("preflight")
def app_preflight(
    ctx: typer.Context,
    store: str = typer.Option(..., "--store", "-s", help="Store identifier."),
    file_path: Optional[Path] = typer.Option(None, "--file", help="Build artifact to check before uploading."),
) -> None:
    """Check credentials, build file and environment before an upload."""

    params: Dict[str, Any] = {"store": store}
    if file_path is not None:
        params["file_path"] = str(file_path)
    _invoke(ctx, "publish.preflight", params)


if __name__ == "__main__":  # pragma: no cover
    app()
