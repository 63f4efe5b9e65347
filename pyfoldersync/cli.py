"""CLI interface for pyfoldersync."""

import logging
import threading
from pathlib import Path
from typing import Any, Optional

import click

from .cli_progress import run_pass_with_progress
from .config import config
from .drive import GoogleDriveStore
from .exceptions import AuthError, ConfigError, FolderSyncError
from .models import RemoteFolderRef, Rule, SizeUnit, WatchedFolder
from .output import OutputFormatter
from .rules import folder_total_size
from .sync import (
    JsonFolderStore,
    ReconciliationEngine,
    SyncReport,
    SyncScheduler,
    TransferExecutor,
    TransferResult,
    WatchfilesChangeSource,
)

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def _configure_logging(verbose: bool, log_file: Optional[str]) -> None:
    if verbose:
        logging.basicConfig(level=logging.DEBUG, format=LOG_FORMAT, datefmt="%H:%M:%S")
        # Enable debug logging for pyfoldersync modules
        logging.getLogger("pyfoldersync").setLevel(logging.DEBUG)
    else:
        # Set default logging level to WARNING to suppress debug/info messages
        logging.basicConfig(level=logging.WARNING)

    if log_file:
        handler = logging.FileHandler(log_file, encoding="utf-8")
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        package_logger = logging.getLogger("pyfoldersync")
        package_logger.addHandler(handler)
        if not verbose:
            package_logger.setLevel(logging.INFO)
            # Keep the console at WARNING while the file receives INFO
            for root_handler in logging.getLogger().handlers:
                root_handler.setLevel(logging.WARNING)


def _require_token(ctx: Any, out: OutputFormatter) -> str:
    token = ctx.obj.get("access_token") or config.access_token
    if not token:
        out.error("Access token not configured.")
        out.info("Run 'pyfoldersync init' or set PYFOLDERSYNC_ACCESS_TOKEN")
        ctx.exit(1)
    return token


def _folder_store() -> JsonFolderStore:
    return JsonFolderStore()


def _find_folder(
    folders: list[WatchedFolder], identifier: str
) -> Optional[WatchedFolder]:
    """Find a folder by id, unique id prefix, or local path."""
    for folder in folders:
        if folder.id == identifier:
            return folder

    prefixed = [f for f in folders if f.id.startswith(identifier)]
    if len(prefixed) == 1:
        return prefixed[0]

    target = Path(identifier).expanduser().resolve()
    for folder in folders:
        if folder.local_path.resolve() == target:
            return folder
    return None


def _load_folder(
    ctx: Any, out: OutputFormatter, identifier: str
) -> tuple[JsonFolderStore, WatchedFolder]:
    store = _folder_store()
    folder = _find_folder(store.load(), identifier)
    if folder is None:
        out.error(f"Watched folder not found: {identifier}")
        ctx.exit(1)
        raise AssertionError("unreachable")  # For type checker
    return store, folder


def _build_engine(
    ctx: Any, out: OutputFormatter, folder_store: Optional[JsonFolderStore]
) -> tuple[GoogleDriveStore, ReconciliationEngine]:
    token = _require_token(ctx, out)
    try:
        width = config.transfer_width
    except ConfigError as e:
        out.error(str(e))
        ctx.exit(1)
        raise
    drive = GoogleDriveStore(access_token=token)
    executor = TransferExecutor(drive, width=width, use_local_trash=ctx.obj["trash"])
    return drive, ReconciliationEngine(executor, persistence=folder_store)


def _report_summary(report: SyncReport) -> list[tuple[str, Any]]:
    stats = report.stats
    return [
        ("Uploaded", stats["uploads"]),
        ("Downloaded", stats["downloads"]),
        ("Deleted locally", stats["deletes_local"]),
        ("Deleted remotely", stats["deletes_remote"]),
        (
            "Folders created",
            stats["folders_created_remote"] + stats["folders_created_local"],
        ),
        ("Skipped by rules", stats["skips"]),
        ("Type conflicts", stats["conflicts"]),
        ("Failures", stats["failures"]),
    ]


def _rule_row(index: int, rule: Rule) -> dict[str, Any]:
    if rule.is_permissive:
        size_range = "any size"
    else:
        size_range = f"{rule.lower_bound}-{rule.upper_bound} {rule.unit.value}"
    return {
        "index": index,
        "id": rule.id[:8],
        "size": size_range,
        "ignored": ", ".join(rule.ignored_extensions) or "-",
    }


@click.group()
@click.option(
    "--access-token",
    "-t",
    envvar="PYFOLDERSYNC_ACCESS_TOKEN",
    help="Drive OAuth access token",
)
@click.option("--quiet", "-q", is_flag=True, help="Suppress non-essential output")
@click.option("--json", is_flag=True, help="Output in JSON format")
@click.option(
    "--verbose",
    "-v",
    is_flag=True,
    help="Enable verbose/debug logging output",
)
@click.option(
    "--log-file",
    type=click.Path(dir_okay=False, writable=True),
    help="Also write log records to this file",
)
@click.option(
    "--trash",
    is_flag=True,
    help="Move locally deleted files to the system trash instead of unlinking",
)
@click.version_option(package_name="pyfoldersync")
@click.pass_context
def main(
    ctx: Any,
    access_token: Optional[str],
    quiet: bool,
    json: bool,
    verbose: bool,
    log_file: Optional[str],
    trash: bool,
) -> None:
    """pyfoldersync - keep local folders in two-way sync with Google Drive."""
    # Store settings in context for subcommands to access
    ctx.ensure_object(dict)
    ctx.obj["access_token"] = access_token
    ctx.obj["out"] = OutputFormatter(json_output=json, quiet=quiet)
    ctx.obj["trash"] = trash
    _configure_logging(verbose, log_file)


@main.command()
@click.option(
    "--access-token",
    "-t",
    prompt="Enter your Drive access token",
    hide_input=True,
    help="Drive OAuth access token",
)
@click.pass_context
def init(ctx: Any, access_token: str) -> None:
    """Store the Drive access token.

    The token is validated by listing the root folder, then saved to
    ~/.config/pyfoldersync/config.
    """
    out: OutputFormatter = ctx.obj["out"]

    out.info("Validating access token...")
    try:
        GoogleDriveStore(access_token=access_token).list_children("root")
    except AuthError:
        out.error("Invalid access token")
        ctx.exit(1)
    except FolderSyncError as e:
        out.error(f"Could not validate access token: {e}")
        ctx.exit(1)

    config.save_access_token(access_token)
    out.print_summary(
        "Initialization Complete",
        [
            ("Status", "✓ Configuration saved successfully"),
            ("Config file", str(config.config_file)),
        ],
    )


@main.command()
@click.argument(
    "local_path", type=click.Path(exists=True, file_okay=False, path_type=Path)
)
@click.argument("remote_folder_id")
@click.option("--remote-name", help="Display name of the remote folder")
@click.option("--account", help="Account owning the remote folder")
@click.pass_context
def add(
    ctx: Any,
    local_path: Path,
    remote_folder_id: str,
    remote_name: Optional[str],
    account: Optional[str],
) -> None:
    """Watch LOCAL_PATH and keep it in sync with REMOTE_FOLDER_ID.

    The folder starts with a rule that accepts every file; use
    'pyfoldersync rule add' to restrict it.

    Examples:
        pyfoldersync add ~/Documents 1AbCdEfGh --remote-name Documents
    """
    out: OutputFormatter = ctx.obj["out"]
    store = _folder_store()
    local_path = local_path.expanduser().resolve()

    existing = _find_folder(store.load(), str(local_path))
    if existing is not None:
        out.error(f"{local_path} is already watched ({existing.id[:8]})")
        ctx.exit(1)

    folder = WatchedFolder(
        local_path=local_path,
        remote_folder=RemoteFolderRef(
            id=remote_folder_id, name=remote_name or remote_folder_id
        ),
        account_id=account or config.default_account,
    )
    store.save(folder)

    if out.json_output:
        out.output_json(folder.to_dict())
    else:
        out.success(f"Watching {folder.display_name} ({folder.id[:8]})")


@main.command()
@click.argument("folder")
@click.pass_context
def remove(ctx: Any, folder: str) -> None:
    """Stop watching FOLDER and forget its synced files.

    FOLDER: Folder id, id prefix, or local path
    """
    out: OutputFormatter = ctx.obj["out"]
    store, watched = _load_folder(ctx, out, folder)
    store.remove(watched.id)
    out.success(f"Removed {watched.local_path}")


@main.command()
@click.argument("folder")
@click.pass_context
def enable(ctx: Any, folder: str) -> None:
    """Enable syncing of FOLDER."""
    out: OutputFormatter = ctx.obj["out"]
    store, watched = _load_folder(ctx, out, folder)
    watched.enabled = True
    store.save(watched)
    out.success(f"Enabled {watched.local_path}")


@main.command()
@click.argument("folder")
@click.pass_context
def disable(ctx: Any, folder: str) -> None:
    """Disable syncing of FOLDER."""
    out: OutputFormatter = ctx.obj["out"]
    store, watched = _load_folder(ctx, out, folder)
    watched.enabled = False
    store.save(watched)
    out.success(f"Disabled {watched.local_path}")


@main.command(name="list")
@click.pass_context
def list_folders(ctx: Any) -> None:
    """List watched folders."""
    out: OutputFormatter = ctx.obj["out"]
    folders = _folder_store().load()

    if out.json_output:
        out.output_json([f.to_dict() for f in folders])
        return
    if not folders:
        out.info("No watched folders. Add one with 'pyfoldersync add'.")
        return

    out.output_table(
        [
            {
                "id": f.id[:8],
                "local": str(f.local_path),
                "remote": f.remote_folder.name if f.remote_folder else "-",
                "enabled": "yes" if f.enabled else "no",
                "rules": len(f.rules),
                "synced": len(f.synced_files),
            }
            for f in folders
        ],
        ["id", "local", "remote", "enabled", "rules", "synced"],
        {
            "id": "ID",
            "local": "Local path",
            "remote": "Remote folder",
            "enabled": "Enabled",
            "rules": "Rules",
            "synced": "Synced files",
        },
    )


@main.group()
def rule() -> None:
    """Manage the inclusion rules of a watched folder."""


@rule.command(name="add")
@click.argument("folder")
@click.option("--min", "min_size", type=int, default=0, show_default=True)
@click.option("--max", "max_size", type=int, default=100, show_default=True)
@click.option(
    "--unit",
    type=click.Choice([u.value for u in SizeUnit], case_sensitive=False),
    default=SizeUnit.MB.value,
    show_default=True,
)
@click.option(
    "--ignore",
    "-i",
    multiple=True,
    help="Extension to exclude (repeatable), e.g. -i tmp -i .log",
)
@click.pass_context
def rule_add(
    ctx: Any,
    folder: str,
    min_size: int,
    max_size: int,
    unit: str,
    ignore: tuple[str, ...],
) -> None:
    """Add an inclusion rule to FOLDER.

    A file is synced when it satisfies at least one rule. The first rule
    added replaces the accept-everything default.

    Examples:
        pyfoldersync rule add ~/Documents --max 10 --unit MB -i zip
    """
    out: OutputFormatter = ctx.obj["out"]
    store, watched = _load_folder(ctx, out, folder)
    try:
        new_rule = Rule(
            lower_bound=min_size,
            upper_bound=max_size,
            unit=SizeUnit(unit.upper()),
            ignored_extensions=list(ignore),
        )
    except ValueError as e:
        out.error(str(e))
        ctx.exit(1)
        return

    rules = [r for r in watched.rules if not r.is_permissive]
    rules.append(new_rule)
    watched.set_rules(rules)
    store.save(watched)
    out.success(f"Added rule {new_rule.id[:8]} to {watched.local_path}")


@rule.command(name="list")
@click.argument("folder")
@click.pass_context
def rule_list(ctx: Any, folder: str) -> None:
    """List the inclusion rules of FOLDER."""
    out: OutputFormatter = ctx.obj["out"]
    _, watched = _load_folder(ctx, out, folder)
    if out.json_output:
        out.output_json([r.to_dict() for r in watched.rules])
        return
    out.output_table(
        [_rule_row(i, r) for i, r in enumerate(watched.rules, start=1)],
        ["index", "id", "size", "ignored"],
        {"index": "#", "id": "ID", "size": "Size range", "ignored": "Ignored extensions"},
    )


@rule.command(name="clear")
@click.argument("folder")
@click.pass_context
def rule_clear(ctx: Any, folder: str) -> None:
    """Remove all rules of FOLDER (every file is synced again)."""
    out: OutputFormatter = ctx.obj["out"]
    store, watched = _load_folder(ctx, out, folder)
    watched.set_rules([])
    store.save(watched)
    out.success(f"Cleared rules of {watched.local_path}")


@main.command()
@click.argument("folder", required=False)
@click.option("--dry-run", is_flag=True, help="Show what would be done")
@click.option("--no-progress", is_flag=True, help="Disable progress bars")
@click.pass_context
def sync(ctx: Any, folder: Optional[str], dry_run: bool, no_progress: bool) -> None:
    """Reconcile FOLDER (or every enabled folder) now.

    Examples:
        pyfoldersync sync                    # All enabled folders
        pyfoldersync sync ~/Documents        # One folder, even if disabled
        pyfoldersync sync 3f2a --dry-run     # Preview by id prefix
    """
    out: OutputFormatter = ctx.obj["out"]
    folder_store = _folder_store()
    if folder is not None:
        _, watched = _load_folder(ctx, out, folder)
        targets = [watched]
    else:
        targets = [f for f in folder_store.load() if f.enabled]
    if not targets:
        out.info("Nothing to sync.")
        return

    _, engine = _build_engine(ctx, out, None if dry_run else folder_store)
    failed = False
    results: list[dict[str, Any]] = []

    try:
        for target in targets:
            out.info(f"Syncing {target.display_name}")
            if dry_run:
                plan_failures: list[TransferResult] = []
                try:
                    decisions = engine.plan(target, plan_failures)
                except (ValueError, FolderSyncError) as e:
                    out.error(f"{target.local_path}: {e}")
                    failed = True
                    continue
                for failure in plan_failures:
                    out.warning(f"{failure.action} {failure.path}: {failure.error}")
                if plan_failures:
                    failed = True
                planned = [d for d in decisions if d.action.is_transfer]
                results.append(
                    {
                        "folder": target.id,
                        "actions": [
                            {"action": d.action.value, "path": d.relative_path}
                            for d in planned
                        ],
                        "failures": [
                            {"action": r.action, "path": r.path, "error": r.error}
                            for r in plan_failures
                        ],
                    }
                )
                if not out.json_output:
                    if planned:
                        out.output_table(
                            [
                                {"action": d.action.value, "path": d.relative_path}
                                for d in planned
                            ],
                            ["action", "path"],
                            {"action": "Action", "path": "Path"},
                        )
                    else:
                        out.info("Already in sync.")
                continue

            if no_progress or out.quiet or out.json_output:
                report = engine.reconcile(target)
            else:
                report = run_pass_with_progress(engine, target)
            results.append(
                {
                    "folder": target.id,
                    "stats": report.stats,
                    "error": report.error,
                    "failures": [
                        {"action": r.action, "path": r.path, "error": r.error}
                        for r in report.failures
                    ],
                }
            )
            if report.error:
                out.error(f"{target.local_path}: {report.error}")
                failed = True
                continue
            for failure in report.failures:
                out.warning(f"{failure.action} {failure.path}: {failure.error}")
            if report.failures:
                failed = True
            out.print_summary(f"Sync Complete: {target.local_path}", _report_summary(report))
    except KeyboardInterrupt:
        out.warning("\nSync cancelled by user")
        ctx.exit(130)

    if out.json_output:
        out.output_json(results)
    if failed:
        ctx.exit(1)


@main.command()
@click.pass_context
def watch(ctx: Any) -> None:
    """Watch every enabled folder and sync on changes until interrupted.

    Local changes trigger a pass after a short quiet period; every folder is
    also reconciled periodically to pick up remote changes.
    """
    out: OutputFormatter = ctx.obj["out"]
    folder_store = _folder_store()
    folders = folder_store.load()
    if not any(f.enabled for f in folders):
        out.info("No enabled folders to watch.")
        return

    _, engine = _build_engine(ctx, out, folder_store)
    try:
        debounce = config.debounce_seconds
        poll_interval = config.poll_interval
    except ConfigError as e:
        out.error(str(e))
        ctx.exit(1)
        return

    def on_report(folder: WatchedFolder, report: SyncReport) -> None:
        if report.error:
            out.error(f"{folder.local_path}: {report.error}")
            return
        changes = sum(
            report.stats[key]
            for key in ("uploads", "downloads", "deletes_local", "deletes_remote")
        )
        out.info(
            f"{folder.local_path}: {changes} change(s), "
            f"{report.stats['failures']} failure(s)"
        )

    change_source = WatchfilesChangeSource()
    scheduler = SyncScheduler(
        engine,
        persistence=folder_store,
        change_source=change_source,
        debounce_seconds=debounce,
        poll_interval=poll_interval,
        on_report=on_report,
    )
    for folder in folders:
        scheduler.add_folder(folder, persist=False)

    out.info(f"Watching {sum(f.enabled for f in folders)} folder(s). Press Ctrl+C to stop.")
    scheduler.start()
    try:
        threading.Event().wait()
    except KeyboardInterrupt:
        out.info("\nStopping...")
    finally:
        scheduler.stop(wait=True)
        change_source.close()


@main.command()
@click.pass_context
def status(ctx: Any) -> None:
    """Show the state of every watched folder."""
    out: OutputFormatter = ctx.obj["out"]
    folders = _folder_store().load()
    rows = []
    for f in folders:
        exists = f.local_path.is_dir()
        rows.append(
            {
                "id": f.id[:8],
                "local": str(f.local_path),
                "state": ("enabled" if f.enabled else "disabled")
                + ("" if exists else " (missing)"),
                "synced": len(f.synced_files),
                "size": out.format_size(folder_total_size(f.local_path) if exists else None),
                "account": f.account_id or "-",
            }
        )

    if out.json_output:
        out.output_json(rows)
        return
    if not rows:
        out.info("No watched folders.")
        return
    out.output_table(
        rows,
        ["id", "local", "state", "synced", "size", "account"],
        {
            "id": "ID",
            "local": "Local path",
            "state": "State",
            "synced": "Synced files",
            "size": "Local size",
            "account": "Account",
        },
    )


@main.command()
@click.pass_context
def folders(ctx: Any) -> None:
    """List the remote folders of the account (to pick a REMOTE_FOLDER_ID)."""
    out: OutputFormatter = ctx.obj["out"]
    token = _require_token(ctx, out)
    try:
        remote_folders = GoogleDriveStore(access_token=token).list_all_folders()
    except AuthError as e:
        out.error(f"Authentication failed: {e}")
        ctx.exit(1)
        return
    except FolderSyncError as e:
        out.error(f"API error: {e}")
        ctx.exit(1)
        return

    out.output_table(
        [{"id": f.id, "name": f.name} for f in remote_folders],
        ["id", "name"],
        {"id": "ID", "name": "Name"},
    )


if __name__ == "__main__":
    main()
