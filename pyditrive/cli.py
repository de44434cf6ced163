"""CLI interface for pyditrive."""

import logging
from pathlib import Path
from typing import Any, Optional

import click

from .cli_progress import TransferProgressDisplay
from .config import DriveAuthType, GlobalConfig, SyncPolicy, validate_threshold_mb
from .exceptions import DitriveConfigError, DitriveError
from .output import OutputFormatter
from .project import Project, create_oauth_manager
from .utils import format_size, relative_posix_path

logger = logging.getLogger(__name__)


def _load_project(ctx: Any) -> Project:
    return Project(ctx.obj["repo"])


def _progress_display(out: OutputFormatter) -> Optional[TransferProgressDisplay]:
    if out.quiet or out.json_output:
        return None
    return TransferProgressDisplay()


def _handle_error(ctx: Any, out: OutputFormatter, e: Exception) -> None:
    if isinstance(e, KeyboardInterrupt):
        out.warning("Operation cancelled by user")
        ctx.exit(130)
    out.error(str(e))
    ctx.exit(1)


@click.group()
@click.option(
    "--repo",
    "-r",
    type=click.Path(file_okay=False, path_type=Path),
    default=".",
    show_default=True,
    help="Repository path",
)
@click.option("--quiet", "-q", is_flag=True, help="Suppress non-essential output")
@click.option("--json", is_flag=True, help="Output in JSON format")
@click.option(
    "--verbose",
    "-v",
    is_flag=True,
    help="Enable verbose/debug logging output",
)
@click.version_option(package_name="pyditrive")
@click.pass_context
def main(ctx: Any, repo: Path, quiet: bool, json: bool, verbose: bool) -> None:
    """pyditrive - Keep large files of a git repository in Google Drive."""
    # Store settings in context for subcommands to access
    ctx.ensure_object(dict)
    ctx.obj["repo"] = repo
    ctx.obj["out"] = OutputFormatter(json_output=json, quiet=quiet)
    ctx.obj["verbose"] = verbose

    # Configure logging based on verbose flag
    if verbose:
        logging.basicConfig(
            level=logging.DEBUG,
            format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
            datefmt="%H:%M:%S",
        )
        # Enable debug logging for pyditrive modules
        logging.getLogger("pyditrive").setLevel(logging.DEBUG)
    else:
        # Set default logging level to WARNING to suppress debug/info messages
        logging.basicConfig(level=logging.WARNING)


@main.command()
@click.pass_context
def configure(ctx: Any) -> None:
    """Configure GitHub and Google Drive access interactively.

    Stores the configuration in ~/.config/pyditrive/config.json.
    """
    out: OutputFormatter = ctx.obj["out"]

    try:
        config = GlobalConfig.load()
        github = config.github
        drive = config.drive
        settings = config.settings

        click.echo("GitHub configuration:")
        github.username = click.prompt("  Username", default=github.username or None)
        github.token = click.prompt(
            "  Personal access token",
            default=github.token or None,
            hide_input=True,
            show_default=False,
        )

        click.echo("\nGoogle Drive configuration:")
        click.echo("  1. OAuth (each user logs in with their Google account)")
        click.echo("  2. Service account (automation/CI)")
        current = "2" if drive.auth_type == DriveAuthType.SERVICE_ACCOUNT else "1"
        choice = click.prompt(
            "  Authentication method", type=click.Choice(["1", "2"]), default=current
        )
        if choice == "2":
            drive.auth_type = DriveAuthType.SERVICE_ACCOUNT
            drive.service_account_file = click.prompt(
                "  Service account key file",
                type=click.Path(exists=True, dir_okay=False),
                default=drive.service_account_file or None,
            )
        else:
            drive.auth_type = DriveAuthType.OAUTH
            click.echo("  (Get these from Google Cloud Console > APIs & Services > Credentials)")
            drive.client_id = click.prompt("  OAuth client ID", default=drive.client_id or None)
            drive.client_secret = click.prompt(
                "  OAuth client secret",
                default=drive.client_secret or None,
                hide_input=True,
                show_default=False,
            )
        drive.root_folder_id = click.prompt(
            "  Root folder ID", default=drive.root_folder_id or None
        )

        click.echo("\nSettings:")
        settings.large_file_threshold_mb = validate_threshold_mb(
            click.prompt(
                "  Large file threshold (MB)",
                type=int,
                default=settings.large_file_threshold_mb,
            )
        )
        settings.handle_ignored_large_files = click.prompt(
            "  Large files that are already ignored",
            type=click.Choice([p.value for p in SyncPolicy]),
            default=settings.handle_ignored_large_files,
        )

        config.save()
        rows = [
            ("Status", "Configuration saved"),
            ("Config file", str(config.config_path)),
        ]
        if not config.is_configured():
            rows.append(("Note", "Configuration is incomplete"))
        elif drive.auth_type == DriveAuthType.OAUTH:
            rows.append(("Next step", "Run 'ditrive login' to authenticate with Drive"))
        out.print_summary("Configuration", rows)

    except (DitriveError, KeyboardInterrupt) as e:
        _handle_error(ctx, out, e)


@main.command()
@click.option("--force", "-f", is_flag=True, help="Log in again even if logged in")
@click.pass_context
def login(ctx: Any, force: bool) -> None:
    """Log in to Google Drive with OAuth."""
    out: OutputFormatter = ctx.obj["out"]

    try:
        config = GlobalConfig.load()
        if config.drive.auth_type != DriveAuthType.OAUTH:
            raise DitriveConfigError(
                "Login is only needed for OAuth; the service account is used as is"
            )
        oauth = create_oauth_manager(config)

        if oauth.is_authenticated() and not force:
            out.info("Already logged in. Use 'ditrive logout' to sign out first.")
            return

        oauth.authorize()
        out.success("Successfully logged in to Google Drive")
        out.info(f"Tokens are stored in {config.tokens_path}")

    except (DitriveError, KeyboardInterrupt) as e:
        _handle_error(ctx, out, e)


@main.command()
@click.pass_context
def logout(ctx: Any) -> None:
    """Revoke the Google Drive login and delete stored tokens."""
    out: OutputFormatter = ctx.obj["out"]

    try:
        config = GlobalConfig.load()
        if config.drive.auth_type != DriveAuthType.OAUTH:
            out.info("OAuth is not configured. Nothing to log out from.")
            return
        create_oauth_manager(config).logout()
        out.success("Logged out from Google Drive")

    except (DitriveError, KeyboardInterrupt) as e:
        _handle_error(ctx, out, e)


@main.command("quick-setup")
@click.option("--name", "-n", help="Repository name (default: directory name)")
@click.option("--description", "-d", default="", help="Repository description")
@click.option("--public", is_flag=True, help="Create a public GitHub repository")
@click.pass_context
def quick_setup(
    ctx: Any, name: Optional[str], description: str, public: bool
) -> None:
    """Create the GitHub repository and Drive folder for this directory."""
    out: OutputFormatter = ctx.obj["out"]

    try:
        project = _load_project(ctx)
        github_repo = project.quick_setup(
            name=name, description=description, private=not public
        )
        out.print_summary(
            "Quick Setup Complete",
            [
                ("Repository", github_repo.full_name),
                ("GitHub", github_repo.html_url),
                ("Drive folder ID", project.repo_config.drive.folder_id),
            ],
        )

    except (DitriveError, KeyboardInterrupt) as e:
        _handle_error(ctx, out, e)


@main.command()
@click.option("--dry-run", is_flag=True, help="Show what would be done")
@click.pass_context
def init(ctx: Any, dry_run: bool) -> None:
    """Offload existing large files and stage the ditrive files in git."""
    out: OutputFormatter = ctx.obj["out"]

    try:
        project = _load_project(ctx)
        engine = project.create_engine(output=out, progress_display=_progress_display(out))
        stats = project.initialize(engine, dry_run=dry_run)
        if out.json_output:
            out.output_json(stats)

    except (DitriveError, ValueError, KeyboardInterrupt) as e:
        _handle_error(ctx, out, e)


@main.command()
@click.option("--dry-run", is_flag=True, help="Show what would be uploaded")
@click.option(
    "--update",
    "-u",
    is_flag=True,
    help="Re-upload managed files whose content changed",
)
@click.pass_context
def push(ctx: Any, dry_run: bool, update: Optional[bool]) -> None:
    """Upload large files that are not managed yet."""
    out: OutputFormatter = ctx.obj["out"]

    try:
        project = _load_project(ctx)
        engine = project.create_engine(output=out, progress_display=_progress_display(out))
        stats = engine.push(dry_run=dry_run, detect_changes=update or None)
        if out.json_output:
            out.output_json(stats)

    except (DitriveError, ValueError, KeyboardInterrupt) as e:
        _handle_error(ctx, out, e)


@main.command()
@click.option("--dry-run", is_flag=True, help="Show what would be downloaded")
@click.pass_context
def pull(ctx: Any, dry_run: bool) -> None:
    """Download managed files that are missing locally."""
    out: OutputFormatter = ctx.obj["out"]

    try:
        project = _load_project(ctx)
        engine = project.create_engine(output=out, progress_display=_progress_display(out))
        stats = engine.pull(dry_run=dry_run)
        if out.json_output:
            out.output_json(stats)

    except (DitriveError, ValueError, KeyboardInterrupt) as e:
        _handle_error(ctx, out, e)


@main.command()
@click.option("--dry-run", is_flag=True, help="Show what would be done")
@click.pass_context
def sync(ctx: Any, dry_run: bool) -> None:
    """Push new large files, then pull missing ones."""
    out: OutputFormatter = ctx.obj["out"]

    try:
        project = _load_project(ctx)
        engine = project.create_engine(output=out, progress_display=_progress_display(out))
        stats = engine.sync(dry_run=dry_run)
        if out.json_output:
            out.output_json(stats)

    except (DitriveError, ValueError, KeyboardInterrupt) as e:
        _handle_error(ctx, out, e)


@main.command()
@click.pass_context
def status(ctx: Any) -> None:
    """Show configuration, login and repository status."""
    out: OutputFormatter = ctx.obj["out"]

    try:
        project = _load_project(ctx)
        out.print_summary("ditrive status", project.status_rows())

    except (DitriveError, KeyboardInterrupt) as e:
        _handle_error(ctx, out, e)


@main.command("list")
@click.pass_context
def list_files(ctx: Any) -> None:
    """List managed files."""
    out: OutputFormatter = ctx.obj["out"]

    try:
        project = _load_project(ctx)
        managed = project.managed_files()
        if not managed and not out.json_output:
            out.info("No files are currently managed by ditrive.")
            return

        rows = [
            [
                relative_posix_path(f.path, project.repo_path),
                format_size(f.record.size_bytes),
                "yes" if f.exists else "missing",
                f.record.remote_id,
            ]
            for f in managed
        ]
        out.print_table(
            ["Path", "Size", "Local", "Remote ID"],
            rows,
            title=f"Managed files in {project.repo_name}",
        )

    except (DitriveError, KeyboardInterrupt) as e:
        _handle_error(ctx, out, e)


if __name__ == "__main__":
    main()
