"""Thin CLI wrapper for buildstash.

This module provides the command-line interface using Typer.
Settings are read here and turned into explicit objects for the core;
all business logic is delegated to core modules.
"""

import json
import logging
from pathlib import Path
from typing import Annotated, Any

import httpx
import typer
from rich.console import Console
from rich.markup import escape

from buildstash import __version__
from buildstash.config import Settings, get_settings, print_settings_json
from buildstash.credentials import (
    CredentialProvider,
    HttpTokenProvider,
    StaticCredentialProvider,
    TimestampTokenProvider,
)
from buildstash.errors import BuildStashError
from buildstash.types import REDACTED

app = typer.Typer(
    name="buildstash",
    help="buildstash - stage short-lived build secrets, refreshed only when build inputs change",
    no_args_is_help=True,
)
console = Console()


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        console.print(f"buildstash version {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: Annotated[
        bool | None,
        typer.Option(
            "--version",
            "-V",
            help="Show version and exit",
            callback=version_callback,
            is_eager=True,
        ),
    ] = None,
) -> None:
    """buildstash - stage short-lived build secrets, refreshed only when build inputs change."""
    logging.basicConfig(
        level=get_settings().log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def _print_json(data: Any) -> None:
    """Print JSON without rich markup or wrapping."""
    console.print(
        json.dumps(data, indent=2), markup=False, highlight=False, soft_wrap=True
    )


def _fail(error: BuildStashError) -> typer.Exit:
    """Report a core error and return the exit to raise."""
    console.print(
        f"[red]Error ({error.code}):[/red] {escape(str(error))}", soft_wrap=True
    )
    return typer.Exit(code=1)


def _fail_lock(error: TimeoutError) -> typer.Exit:
    """Report a stash lock that could not be acquired."""
    console.print(
        f"[red]Error (lock_timeout):[/red] {escape(str(error))}", soft_wrap=True
    )
    return typer.Exit(code=1)


def _open_store(settings: Settings) -> Any:
    """Create the persistent stash store from settings."""
    from buildstash.db import create_all_tables, get_engine, get_session_factory
    from buildstash.stash.store import SqlStashStore

    if settings.db_url.startswith("sqlite:///"):
        db_path = settings.db_url.removeprefix("sqlite:///")
        if db_path and db_path != ":memory:":
            Path(db_path).parent.mkdir(parents=True, exist_ok=True)

    engine = get_engine(settings.db_url)
    create_all_tables(engine)
    return SqlStashStore(get_session_factory(engine))


def provider_from_settings(settings: Settings) -> CredentialProvider:
    """Choose the credential provider the settings describe.

    A token endpoint wins over a static token; with neither configured a
    demo provider minting timestamp tokens is used.
    """
    if settings.token_url:
        return HttpTokenProvider(
            httpx.Client(),
            settings.token_url,
            token_field=settings.token_field,
            timeout=settings.fetch_timeout,
        )
    if settings.codeartifact_auth_token is not None:
        return StaticCredentialProvider(settings.codeartifact_auth_token)
    return TimestampTokenProvider()


def demo_build_args(settings: Settings) -> dict[str, str]:
    """Return the CodeArtifact build arguments from settings."""
    return {
        "AWS_CODEARTIFACT_DOMAIN": settings.codeartifact_domain,
        "AWS_ACCOUNT_ID": settings.aws_account_id,
        "AWS_REGION": settings.aws_region,
    }


@app.command()
def config(
    json_output: Annotated[
        bool,
        typer.Option("--json", help="Output as JSON"),
    ] = False,
) -> None:
    """Show effective configuration."""
    settings = get_settings()
    if json_output:
        console.print(print_settings_json(settings), markup=False, soft_wrap=True)
        return

    token_display = REDACTED if settings.codeartifact_auth_token else "(not set)"
    console.print("[bold]Effective Configuration:[/bold]")
    console.print()
    console.print("[bold]Credentials:[/bold]")
    console.print(f"  CodeArtifact domain: {settings.codeartifact_domain}")
    console.print(f"  AWS account id:      {settings.aws_account_id}")
    console.print(f"  AWS region:          {settings.aws_region}")
    console.print(f"  Static token:        {token_display}", markup=False)
    console.print(f"  Token URL:           {settings.token_url or '(not set)'}")
    console.print(f"  Secret build arg:    {settings.secret_arg_name}")
    console.print()
    console.print("[bold]Paths:[/bold]")
    console.print(f"  Database URL:        {settings.db_url}")
    console.print(f"  Lock directory:      {settings.lock_dir}")
    console.print(f"  Work directory:      {settings.work_dir}")
    console.print()
    console.print("[bold]Operational:[/bold]")
    console.print(f"  Log level:           {settings.log_level}")
    console.print(f"  Fetch timeout:       {settings.fetch_timeout}")
    console.print(f"  Build timeout:       {settings.build_timeout}")
    console.print(f"  Lock timeout:        {settings.lock_timeout}")


@app.command()
def fingerprint(
    config_file: Annotated[Path, typer.Argument(help="Build config (YAML or JSON)")],
    json_output: Annotated[
        bool,
        typer.Option("--json", help="Output as JSON"),
    ] = False,
) -> None:
    """Show the fingerprint of a build configuration."""
    from buildstash.builds.fingerprint import FingerprintComputer
    from buildstash.builds.io import load_build_config

    computer = FingerprintComputer()
    try:
        build_config = load_build_config(config_file)
        value = computer.compute(build_config)
        snapshot = computer.snapshot(build_config)
    except BuildStashError as e:
        raise _fail(e) from None

    if json_output:
        _print_json({"fingerprint": value, "inputs": snapshot})
    else:
        console.print(value, soft_wrap=True)


@app.command()
def build(
    config_file: Annotated[Path, typer.Argument(help="Build config (YAML or JSON)")],
    target: Annotated[
        str | None,
        typer.Option("--target", "-t", help="Build target name (default: file stem)"),
    ] = None,
    secret_arg: Annotated[
        str | None,
        typer.Option("--secret-arg", help="Build argument receiving the secret"),
    ] = None,
    with_demo_args: Annotated[
        bool,
        typer.Option(
            "--codeartifact-args/--no-codeartifact-args",
            help="Add CodeArtifact domain/account/region build arguments",
        ),
    ] = False,
    json_output: Annotated[
        bool,
        typer.Option("--json", help="Output as JSON"),
    ] = False,
) -> None:
    """Build an image with the staged secret as a redacted build argument.

    The secret is fetched again only when the configuration fingerprint
    differs from the one it was staged under.
    """
    from buildstash.builds.coordinator import CoordinatorConfig, create_coordinator
    from buildstash.builds.io import load_build_config

    settings = get_settings()
    target_name = target or config_file.stem
    provider = provider_from_settings(settings)

    try:
        build_config = load_build_config(config_file)
        if with_demo_args:
            for name, value in demo_build_args(settings).items():
                if name not in build_config.arg_names():
                    build_config = build_config.with_build_arg(name, value)

        coordinator = create_coordinator(
            CoordinatorConfig(
                target=target_name,
                secret_arg_name=(
                    secret_arg if secret_arg is not None else settings.secret_arg_name
                ),
                fetch_timeout=settings.fetch_timeout,
                build_timeout=settings.build_timeout,
                work_dir=settings.work_dir,
                lock_dir=settings.lock_dir,
                lock_timeout=settings.lock_timeout,
            ),
            provider=provider,
            store=_open_store(settings),
        )
        result = coordinator.run(build_config)
    except BuildStashError as e:
        raise _fail(e) from None
    except TimeoutError as e:
        raise _fail_lock(e) from None
    finally:
        if isinstance(provider, HttpTokenProvider):
            provider.close()

    record = coordinator.stash.current()
    outcome = coordinator.stash.last_outcome
    output = {
        "target": target_name,
        "image_ref": result.ref,
        "stash": {
            "outcome": outcome.value if outcome else None,
            "generation": record.generation if record else None,
            "staged_under": record.staged_under if record else None,
        },
        "build_args": result.args,
        "secrets_used": {
            "token_preview": result.args.get(coordinator.config.secret_arg_name),
            "domain": settings.codeartifact_domain,
            "account_id": settings.aws_account_id,
            "region": settings.aws_region,
        },
        "log_path": str(result.log_path) if result.log_path else None,
    }

    if json_output:
        _print_json(output)
        return

    console.print(f"[green]Built {target_name}[/green]: {result.ref or '(no image id)'}")
    if record is not None and outcome is not None:
        console.print(f"  Secret: {outcome.value} (generation {record.generation})")
    console.print("  Build args:")
    for name, value in result.args.items():
        console.print(f"    {name}={value}", markup=False)
    if result.log_path:
        console.print(f"  Log: {result.log_path}")


stash_app = typer.Typer(help="Inspect and reset staged secrets")
app.add_typer(stash_app, name="stash")


@stash_app.command("show")
def stash_show(
    json_output: Annotated[
        bool,
        typer.Option("--json", help="Output as JSON"),
    ] = False,
) -> None:
    """List staged secrets (values are never shown)."""
    store = _open_store(get_settings())
    entries = []
    for target_name in store.targets():
        record = store.load(target_name)
        if record is not None:
            entries.append({"target": target_name, **record.summary()})

    if json_output:
        _print_json(entries)
        return

    if not entries:
        console.print("[yellow]No staged secrets[/yellow]")
        return

    console.print(f"[bold]Found {len(entries)} staged secret(s):[/bold]")
    console.print()
    for entry in entries:
        console.print(f"  [green]{entry['target']}[/green]")
        console.print(f"    Generation: {entry['generation']}")
        console.print(f"    Staged under: {entry['staged_under']}", soft_wrap=True)
        console.print(f"    Staged at: {entry['staged_at']}")
        console.print()


@stash_app.command("clear")
def stash_clear(
    target: Annotated[str, typer.Argument(help="Build target to reset")],
) -> None:
    """Drop a staged secret so the next build fetches a fresh one."""
    from buildstash.stash.service import SecretStash

    settings = get_settings()
    provider = provider_from_settings(settings)
    stash = SecretStash(
        target=target,
        provider=provider,
        store=_open_store(settings),
        lock_dir=settings.lock_dir,
        lock_timeout=settings.lock_timeout,
    )
    try:
        if stash.current() is None:
            console.print(f"[red]No staged secret for target: {escape(target)}[/red]")
            raise typer.Exit(code=1)
        stash.invalidate()
    except TimeoutError as e:
        raise _fail_lock(e) from None
    finally:
        if isinstance(provider, HttpTokenProvider):
            provider.close()
    console.print(f"[green]Cleared staged secret for {escape(target)}[/green]")


if __name__ == "__main__":
    app()
