"""
Chronovault CLI — create, open, and manage time-locked vaults.

Usage:
    chronovault create --in 7d              # Encrypt a secret (read from stdin or prompt)
    chronovault list                        # Show local vaults
    chronovault open <id|link>              # Unlock a vault (--wait to block until due)
    chronovault share <id>                  # Print the shareable link
    chronovault delete <id>                 # Forget a local vault
    chronovault backup                      # Print a backup link for all local vaults
    chronovault restore <link>              # Merge vaults from a backup link
    chronovault serve                       # Start the upload endpoint
    chronovault version                     # Show version
"""

from __future__ import annotations

import argparse
import asyncio
import getpass
import logging
import re
import sys
from datetime import UTC, datetime, timedelta
from pathlib import Path

_DURATION = re.compile(r"^(\d+)\s*([smhdw])$")
_UNITS = {"s": "seconds", "m": "minutes", "h": "hours", "d": "days", "w": "weeks"}


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(
        prog="chronovault",
        description="Chronovault — encrypt a secret now, read it only after a chosen time.",
    )
    parser.add_argument("--version", action="store_true", help="Show version and exit")
    parser.add_argument("--verbose", "-v", action="store_true", help="Debug logging")

    subparsers = parser.add_subparsers(dest="command")

    # create
    create_parser = subparsers.add_parser("create", help="Create and arm a vault")
    when = create_parser.add_mutually_exclusive_group(required=True)
    when.add_argument("--unlock-at", type=str, help="ISO-8601 unlock time (UTC if no offset)")
    when.add_argument(
        "--in", dest="unlock_in", type=str, help="Unlock after a delay, e.g. 30m, 12h, 7d"
    )
    create_parser.add_argument(
        "--destroy-after-read", action="store_true", help="Delete after first read"
    )
    create_parser.add_argument("--name", type=str, help="Label shown in `list`")
    create_parser.add_argument("--secret-file", type=str, help="Read the secret from a file")
    create_parser.add_argument("--yes", "-y", action="store_true", help="Arm without confirmation")

    # list
    subparsers.add_parser("list", help="List local vaults")

    # open
    open_parser = subparsers.add_parser("open", help="Unlock a vault")
    open_parser.add_argument("target", help="Vault id or shareable link")
    open_parser.add_argument("--wait", action="store_true", help="Wait until the unlock time")
    open_parser.add_argument("--yes", "-y", action="store_true", help="Skip destroy confirmation")

    # share
    share_parser = subparsers.add_parser("share", help="Print a vault's shareable link")
    share_parser.add_argument("vault_id")

    # delete
    delete_parser = subparsers.add_parser("delete", help="Delete a local vault")
    delete_parser.add_argument("vault_id")

    # backup / restore
    subparsers.add_parser("backup", help="Print a backup link for all local vaults")
    restore_parser = subparsers.add_parser("restore", help="Restore vaults from a backup link")
    restore_parser.add_argument("link", help="Backup link or bare token")
    restore_parser.add_argument(
        "--yes", "-y", action="store_true", help="Restore without confirmation"
    )

    # serve
    serve_parser = subparsers.add_parser("serve", help="Start the upload endpoint")
    serve_parser.add_argument("--host", default="127.0.0.1", help="Bind address")
    serve_parser.add_argument("--port", type=int, default=None, help="Port")

    # version
    subparsers.add_parser("version", help="Show version")

    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    if args.version or args.command == "version":
        from chronovault import __version__

        print(f"chronovault {__version__}")
        return 0

    if args.command == "create":
        return asyncio.run(_cmd_create(args))
    elif args.command == "list":
        return asyncio.run(_cmd_list())
    elif args.command == "open":
        return asyncio.run(_cmd_open(args))
    elif args.command == "share":
        return asyncio.run(_cmd_share(args))
    elif args.command == "delete":
        return asyncio.run(_cmd_delete(args))
    elif args.command == "backup":
        return asyncio.run(_cmd_backup())
    elif args.command == "restore":
        return asyncio.run(_cmd_restore(args))
    elif args.command == "serve":
        return _cmd_serve(args)
    else:
        parser.print_help()
        return 0


# ─── Helpers ─────────────────────────────────────────────────────────


def parse_unlock_time(
    unlock_at: str | None, unlock_in: str | None, now: datetime | None = None
) -> datetime:
    """Resolve --unlock-at / --in to an aware UTC instant."""
    now = now or datetime.now(UTC)
    if unlock_in:
        m = _DURATION.match(unlock_in.strip().lower())
        if not m:
            raise ValueError(f"Invalid duration: {unlock_in!r} (use e.g. 30m, 12h, 7d)")
        return now + timedelta(**{_UNITS[m.group(2)]: int(m.group(1))})
    if not unlock_at:
        raise ValueError("An unlock time is required")
    instant = datetime.fromisoformat(unlock_at)
    if instant.tzinfo is None:
        instant = instant.replace(tzinfo=UTC)
    return instant.astimezone(UTC)


def _confirm(prompt: str) -> bool:
    try:
        return input(f"{prompt} [y/N] ").strip().lower() in ("y", "yes")
    except EOFError:
        return False


def _read_secret(secret_file: str | None) -> str:
    if secret_file:
        return Path(secret_file).read_text(encoding="utf-8")
    if not sys.stdin.isatty():
        return sys.stdin.read()
    return getpass.getpass("Secret: ")


def _store():
    from chronovault.config import get_config
    from chronovault.vault.store import FileVaultStore

    return FileVaultStore(get_config().store_path)


def _services():
    from chronovault.config import get_config
    from chronovault.pinning import GatewayFetcher, UploadClient
    from chronovault.timelock import HttpTimeLockClient

    cfg = get_config()
    store = _store()
    timelock = HttpTimeLockClient(cfg.timelock.base_url, timeout=cfg.timelock.timeout)
    content = UploadClient(
        cfg.upload_url,
        cfg.unpin_url,
        GatewayFetcher(cfg.pinning.gateways, timeout=cfg.pinning.fetch_timeout),
    )
    return cfg, store, timelock, content


def _format_remaining(seconds: float) -> str:
    total = int(seconds)
    days, rem = divmod(total, 86400)
    hours, rem = divmod(rem, 3600)
    minutes, secs = divmod(rem, 60)
    if days:
        return f"{days}d {hours}h {minutes}m"
    if hours:
        return f"{hours}h {minutes}m {secs}s"
    return f"{minutes}m {secs}s"


# ─── Commands ────────────────────────────────────────────────────────


async def _cmd_create(args: argparse.Namespace) -> int:
    from chronovault.commit import VaultCommitter
    from chronovault.errors import ChronovaultError
    from chronovault.vault.share import share_url

    try:
        unlock_time = parse_unlock_time(args.unlock_at, args.unlock_in)
    except ValueError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 2

    cfg, store, timelock, content = _services()
    committer = VaultCommitter(
        timelock, store, content_store=content, inline_threshold=cfg.upload.inline_threshold
    )
    try:
        secret = _read_secret(args.secret_file)
        try:
            draft = await committer.create_draft(
                secret, unlock_time, destroy_after_read=args.destroy_after_read, name=args.name
            )
        except ChronovaultError as e:
            print(f"Error: {e}", file=sys.stderr)
            return 1
        finally:
            del secret

        print(f"Vault ready, unlocks {draft.unlock_time.isoformat()}")
        if draft.destroy_after_read:
            print("Will be destroyed after reading.")
        print("Arming is irreversible: nobody, including you, can open it before then.")
        if not args.yes and not _confirm("Arm vault?"):
            committer.discard()
            print("Draft discarded.")
            return 1

        try:
            vault = await committer.arm()
        except ChronovaultError:
            print(f"Error: {committer.error}", file=sys.stderr)
            return 1

        print(f"Vault {vault.id} armed.")
        print(share_url(vault, cfg.public_url))
        return 0
    finally:
        committer.close()
        await timelock.close()
        await content.close()


async def _cmd_list() -> int:
    from chronovault.timelock import is_unlockable

    vaults = await _store().list_all()
    if not vaults:
        print("No vaults.")
        return 0
    for v in vaults:
        status = "ready" if is_unlockable(v.unlock_time) else "locked"
        flags = " (destroy after read)" if v.destroy_after_read else ""
        label = f" {v.name}" if v.name else ""
        print(f"{v.id}{label}  {status:6}  {v.unlock_time.isoformat()}{flags}")
    return 0


async def _cmd_open(args: argparse.Namespace) -> int:
    from chronovault.timelock import UnlockWatcher
    from chronovault.unlock import UnlockState, VaultUnlocker
    from chronovault.vault.share import parse_vault_url

    vault_id, fragment = parse_vault_url(args.target)
    if not vault_id:
        print("Error: not a vault id or link", file=sys.stderr)
        return 2

    _, store, timelock, content = _services()
    unlocker = VaultUnlocker(timelock, store, content_store=content)
    try:
        state = await unlocker.load(vault_id, fragment)
        if state == UnlockState.NOT_FOUND:
            print("Vault not found. Make sure you have the complete link.", file=sys.stderr)
            return 1

        if state == UnlockState.LOCKED:
            remaining = _format_remaining(unlocker.seconds_remaining)
            if not args.wait:
                print(f"Locked. Unlocks in {remaining}. No early access.")
                return 1
            print(f"Locked. Waiting {remaining}...")
            watcher = UnlockWatcher(unlocker.vault.unlock_time, unlocker.refresh)
            await watcher.run()

        if unlocker.vault.destroy_after_read and not args.yes:
            if not _confirm("This vault is destroyed after reading. Open it now?"):
                return 1

        plaintext = await unlocker.unlock()
        if plaintext is None:
            print(f"Unlock failed: {unlocker.error}", file=sys.stderr)
            return 1

        print(plaintext)
        if unlocker.state == UnlockState.DESTROYED:
            print("(This vault has been destroyed.)", file=sys.stderr)
        return 0
    finally:
        unlocker.close()
        await timelock.close()
        await content.close()


async def _cmd_share(args: argparse.Namespace) -> int:
    from chronovault.config import get_config
    from chronovault.vault.share import share_url

    vault = await _store().get(args.vault_id)
    if vault is None:
        print("Vault not found.", file=sys.stderr)
        return 1
    print(share_url(vault, get_config().public_url))
    return 0


async def _cmd_delete(args: argparse.Namespace) -> int:
    if not await _store().delete(args.vault_id):
        print("Vault not found.", file=sys.stderr)
        return 1
    print(f"Deleted {args.vault_id}.")
    return 0


async def _cmd_backup() -> int:
    from chronovault.config import get_config
    from chronovault.vault.share import backup_url

    vaults = await _store().list_all()
    if not vaults:
        print("No vaults to back up.", file=sys.stderr)
        return 1
    print(backup_url(vaults, get_config().public_url))
    return 0


async def _cmd_restore(args: argparse.Namespace) -> int:
    from chronovault.vault.share import (
        BackupStatus,
        decode_backup_fragment,
        preview_restore,
        restore_backup,
    )

    fragment = args.link.split("#", 1)[1] if "#" in args.link else args.link
    result = decode_backup_fragment(fragment)
    if result.status == BackupStatus.ABSENT:
        print("Error: no backup found in that link.", file=sys.stderr)
        return 1
    if result.status == BackupStatus.CORRUPT:
        print("Error: the backup link is damaged or incomplete.", file=sys.stderr)
        return 1

    store = _store()
    preview = await preview_restore(store, result.vaults)
    print(
        f"{len(result.vaults)} vaults in backup: "
        f"{len(preview.restored)} new, {len(preview.skipped)} already present."
    )
    if not preview.restored:
        return 0
    if not args.yes and not _confirm("Restore?"):
        return 1
    summary = await restore_backup(store, result.vaults)
    print(f"{len(summary.restored)} vaults restored.")
    return 0


def _cmd_serve(args: argparse.Namespace) -> int:
    import uvicorn

    from chronovault.config import get_config

    port = args.port or get_config().port
    uvicorn.run("chronovault.api.server:app", host=args.host, port=port)
    return 0


if __name__ == "__main__":
    sys.exit(main())
