"""ipadown CLI - Main commands."""
import asyncio
import shutil
import tempfile
from pathlib import Path
from typing import List, Optional

import typer
from rich.console import Console
from rich.markup import escape
from rich.progress import Progress, SpinnerColumn, TextColumn, BarColumn, TaskProgressColumn, DownloadColumn
from rich.table import Table

from ipadown.core.exceptions import (
    AuthTransportError,
    BindFailedError,
    CatalogTransportError,
    FetchTransportError,
    InvalidCredentialsError,
    IpadownException,
    MalformedArchiveError,
    NoVersionsFoundError,
    PortInUseError,
    RemoteRejectedError,
    RepackageIOError,
    SecretStoreError,
    ServerError,
    StorageError,
    TwoFactorRequiredError,
    UnsupportedLayoutError,
)

app = typer.Typer(
    name="ipadown",
    help="Install older versions of App Store apps",
    add_completion=False
)
console = Console()


# Identity lives in ~/.config/ipadown: device.key (RSA key) + authinfo (encrypted blob)
def get_config_dir() -> Path:
    config_dir = Path.home() / ".config" / "ipadown"
    config_dir.mkdir(parents=True, exist_ok=True)
    return config_dir


def get_vault():
    from ipadown import CredentialVault, FileSecretStore

    config_dir = get_config_dir()
    return CredentialVault(FileSecretStore(config_dir / "device.key"), config_dir / "authinfo")


def run_async(coro):
    """Run async function."""
    return asyncio.run(coro)


ERROR_HINTS = [
    (TwoFactorRequiredError, "A two-factor code is required. Run 'ipadown login --code <code>'."),
    (InvalidCredentialsError, "Sign-in refused. Check the Apple ID and password."),
    (AuthTransportError, "Could not reach the store to sign in."),
    (NoVersionsFoundError, "No versions found for this app."),
    (CatalogTransportError, "Version lookup failed."),
    (RemoteRejectedError, "The store refused the download."),
    (FetchTransportError, "Download failed."),
    (StorageError, "Could not write the download to disk."),
    (MalformedArchiveError, "The downloaded archive is not a valid app package."),
    (UnsupportedLayoutError, "This app's signature layout is not supported."),
    (RepackageIOError, "Could not write the repackaged app to disk."),
    (PortInUseError, "The local server port is in use. Pick another with --port."),
    (BindFailedError, "The local server could not bind its address."),
    (ServerError, "The local server could not serve the app."),
    (SecretStoreError, "Stored identity could not be read. Run 'ipadown logout' and log in again."),
]


def report_error(e: IpadownException) -> None:
    for exc_type, hint in ERROR_HINTS:
        if isinstance(e, exc_type):
            console.print(f"[red]{hint}[/red]")
            break
    console.print(f"[dim]{escape(str(e))}[/dim]")


def resolve_app_id(app: str) -> str:
    from ipadown import parse_app_id

    app_id = parse_app_id(app)
    if not app_id:
        console.print(f"[red]Not an app id or store link: {app}[/red]")
        raise typer.Exit(1)
    return app_id


def print_versions(versions) -> None:
    table = Table()
    table.add_column("#", justify="right", style="dim")
    table.add_column("Version")
    table.add_column("Version ID", style="cyan")
    for i, version in enumerate(versions, 1):
        table.add_row(str(i), version.display_version, version.external_id)
    console.print(table)


def choose_version(versions) -> str:
    """Prompt for a version by list number or external id."""
    print_versions(versions)
    ids = [v.external_id for v in versions]
    while True:
        answer = typer.prompt("Version (number or version ID)").strip()
        if answer in ids:
            return answer
        if answer.isdigit() and 1 <= int(answer) <= len(versions):
            return ids[int(answer) - 1]
        console.print("[yellow]Not in the list, try again[/yellow]")


def make_client(port: int = 9090, timeout: Optional[float] = None):
    from ipadown import DowngradeClient

    config = DowngradeClient.create_config(port=port, serve_timeout=timeout)
    return DowngradeClient(get_vault(), config=config)


@app.command()
def login(
    apple_id: str = typer.Option(None, "--apple-id", "-u", help="Apple ID"),
    password: str = typer.Option(None, "--password", "-p", help="Password"),
    code: str = typer.Option(None, "--code", "-c", help="Two-factor code"),
):
    """Sign in to the store and save the identity."""
    if not apple_id:
        apple_id = typer.prompt("Apple ID")
    if not password:
        password = typer.prompt("Password", hide_input=True)

    async def do_login():
        async with make_client() as client:
            try:
                context = await client.login(apple_id, password, code)
            except TwoFactorRequiredError:
                two_factor = typer.prompt("Two-factor code")
                context = await client.login(apple_id, password, two_factor)
            console.print(f"[green]Logged in as {context.account_name or apple_id}[/green]")
            console.print(f"Identity saved to: {get_config_dir()}")

    try:
        run_async(do_login())
    except IpadownException as e:
        report_error(e)
        raise typer.Exit(1)


@app.command()
def logout():
    """Forget the stored identity and rotate the device key."""
    vault = get_vault()
    if not vault.exists():
        console.print("[yellow]No stored identity[/yellow]")

    async def do_logout():
        async with make_client() as client:
            await client.logout()

    try:
        run_async(do_logout())
    except IpadownException as e:
        report_error(e)
        raise typer.Exit(1)
    console.print("[green]Logged out successfully[/green]")


@app.command()
def whoami():
    """Show the stored identity."""
    vault = get_vault()
    if not vault.exists():
        console.print("[red]Not logged in. Run 'ipadown login' first.[/red]")
        raise typer.Exit(1)

    try:
        data = vault.load()
    except SecretStoreError:
        data = None

    if data and data.is_valid():
        console.print(f"Apple ID: {data.credential.apple_id}")
        if data.context.account_name:
            console.print(f"Name: {data.context.account_name}")
        console.print(f"DSID: {data.context.dsid}")
        console.print(f"Storefront: {data.context.store_front}")
        console.print(f"GUID: {data.credential.guid}")
    else:
        console.print("[red]Stored identity is unreadable. Run 'ipadown login' again.[/red]")
        raise typer.Exit(1)


@app.command()
def versions(
    link: str = typer.Argument(..., metavar="APP", help="App id or App Store link"),
    server: bool = typer.Option(False, "--server/--manual", help="List versions from the mirror server instead of the store"),
):
    """List the versions available for an app."""
    app_id = resolve_app_id(link)

    async def do_versions() -> List:
        async with make_client() as client:
            if not server and client.resume() is None:
                console.print("[red]Not logged in. Run 'ipadown login' first.[/red]")
                raise typer.Exit(1)
            return await client.list_versions(app_id, source='mirror' if server else 'store')

    try:
        found = run_async(do_versions())
    except IpadownException as e:
        report_error(e)
        raise typer.Exit(1)
    print_versions(found)


@app.command()
def download(
    link: str = typer.Argument(..., metavar="APP", help="App id or App Store link"),
    version: str = typer.Option(None, "--version", "-v", help="External version id (prompted if omitted)"),
    output: Path = typer.Option(None, "--output", "-o", help="Output .ipa path"),
    server: bool = typer.Option(False, "--server/--manual", help="List versions from the mirror server instead of the store"),
):
    """Download and repackage one version of an app."""
    app_id = resolve_app_id(link)

    async def do_download():
        async with make_client() as client:
            if client.resume() is None:
                console.print("[red]Not logged in. Run 'ipadown login' first.[/red]")
                raise typer.Exit(1)

            version_id = version
            if not version_id:
                version_id = choose_version(
                    await client.list_versions(app_id, source='mirror' if server else 'store')
                )

            with tempfile.TemporaryDirectory(prefix="ipadown-") as work_dir, Progress(
                SpinnerColumn(),
                TextColumn("[progress.description]{task.description}"),
                BarColumn(),
                TaskProgressColumn(),
                DownloadColumn(),
                console=console
            ) as progress:
                task = progress.add_task(f"Downloading {app_id} ({version_id})", total=None)

                def on_progress(downloaded, total):
                    progress.update(task, completed=downloaded, total=total or None)

                artifact = await client.download(app_id, version_id, work_dir, on_progress)
                output_path = output or Path(f"{artifact.bundle_id}_{artifact.bundle_version}.ipa")
                shutil.move(str(artifact.path), str(output_path))

            console.print(f"[green]Saved:[/green] {output_path}")
            console.print(f"Bundle: {artifact.bundle_id} {artifact.bundle_version}")

    try:
        run_async(do_download())
    except IpadownException as e:
        report_error(e)
        raise typer.Exit(1)


@app.command()
def downgrade(
    link: str = typer.Argument(..., metavar="APP", help="App id or App Store link"),
    version: str = typer.Option(None, "--version", "-v", help="External version id (prompted if omitted)"),
    server: bool = typer.Option(False, "--server/--manual", help="List versions from the mirror server instead of the store"),
    legacy_os: bool = typer.Option(False, "--legacy-os", help="Open the install URL directly (older OS releases)"),
    port: int = typer.Option(9090, "--port", help="Local server port"),
    timeout: Optional[float] = typer.Option(None, "--timeout", "-t", help="Stop serving after this many seconds"),
):
    """Download, repackage and serve a version for installation."""
    app_id = resolve_app_id(link)

    async def do_downgrade():
        async with make_client(port=port, timeout=timeout) as client:
            if client.resume() is None:
                console.print("[red]Not logged in. Run 'ipadown login' first.[/red]")
                raise typer.Exit(1)

            version_id = version
            if not version_id:
                version_id = choose_version(
                    await client.list_versions(app_id, source='mirror' if server else 'store')
                )

            def opener(url: str):
                console.print(f"[cyan]Install URL:[/cyan] {url}")
                console.print("Press Ctrl+C once the install has finished.")
                typer.launch(url)

            with tempfile.TemporaryDirectory(prefix="ipadown-") as work_dir:
                artifact = await client.downgrade(
                    app_id,
                    version_id,
                    work_dir,
                    opener,
                    use_install_page=not legacy_os,
                )
            console.print(f"[green]Served:[/green] {artifact.bundle_id} {artifact.bundle_version}")

    try:
        run_async(do_downgrade())
    except KeyboardInterrupt:
        console.print("[green]Server stopped[/green]")
    except IpadownException as e:
        report_error(e)
        raise typer.Exit(1)


def main():
    """Entry point."""
    app()


if __name__ == "__main__":
    main()
