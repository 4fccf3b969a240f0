"""Backup / restore / retention of the world through ephemeral helper workers.

Nothing in this process touches the data or archive volumes directly; every
operation is a short ``sh -c`` script in a throwaway container that mounts only
what it needs.
"""

from __future__ import annotations

import logging
import re
import shlex
from datetime import datetime, timezone
from typing import Any

from ..context import SupervisorContext
from ..errors import (
    ArchiveFailed,
    BackupError,
    BackupInProgress,
    RestoreFailed,
    SupervisorError,
    WorkerExecutionError,
)
from ..gateway.base import VolumeMount, WorkerResult
from ..rcon.commands import RconCommands
from .models import (
    ARCHIVE_NAME,
    BackupRecord,
    BackupResult,
    BackupStats,
    RestoreResult,
    RetentionPolicy,
    archive_timestamp,
    parse_archive_timestamp,
    validate_archive_name,
    validate_label,
)
from .retention import select_for_deletion

logger = logging.getLogger("mcsupervisor.backup")

DATA_MOUNT = "/data"
ARCHIVE_MOUNT = "/backups"
RESTORED_MARKER = "RESTORED"
PRESERVED_MARKER = "PRESERVED"
ROLLED_BACK_MARKER = "ROLLED_BACK"

_SIZE_LINE = re.compile(r"^(\d+)\s*$", re.M)
_LISTING_LINE = re.compile(r"^(\d+) " + re.escape(ARCHIVE_MOUNT) + r"/(\S+)$")


def _tail(output: str, lines: int = 5) -> str:
    return "\n".join(output.strip().splitlines()[-lines:])


def _rollback_note(restored: bool | None, preserved: str) -> str:
    if restored is None:
        return ""
    if restored:
        return f"; previous world restored from {preserved}"
    return f"; rollback failed, previous world left at {preserved}"


class BackupOrchestrator:
    def __init__(self, context: SupervisorContext, retention: RetentionPolicy | None = None) -> None:
        self._ctx = context
        self._cfg = context.config
        self.retention = retention or RetentionPolicy.from_config(context.config)
        self._busy = False

    @property
    def is_running(self) -> bool:
        return self._busy

    # -- helpers --------------------------------------------------------------

    def _progress(self, phase: str, message: str, **extra: Any) -> None:
        logger.info("[%s] %s", phase, message)
        self._ctx.events.emit("backup-progress", {"phase": phase, "message": message, **extra})

    def _acquire(self) -> None:
        if self._busy:
            raise BackupInProgress()
        self._busy = True

    def _mounts(self, data_ro: bool | None, archives_ro: bool) -> list[VolumeMount]:
        """``data_ro`` None leaves the data volume unmounted."""
        mounts = []
        if data_ro is not None:
            mounts.append(VolumeMount(self._cfg.data_volume, DATA_MOUNT, read_only=data_ro))
        mounts.append(VolumeMount(self._cfg.backup_volume, ARCHIVE_MOUNT, read_only=archives_ro))
        return mounts

    async def _run(self, script: str, mounts: list[VolumeMount]) -> WorkerResult:
        logger.debug("Worker script: %s", script)
        return await self._ctx.gateway.run_ephemeral_worker(
            self._cfg.helper_image, ["sh", "-c", script], mounts, self._cfg.worker_timeout_s,
        )

    async def _workload_running(self) -> bool:
        try:
            return await self._ctx.gateway.is_workload_running()
        except SupervisorError as exc:
            logger.warning("Could not determine server state: %s", exc)
            return False

    async def _quiesce(self) -> bool:
        """save-off + save-all flush. Returns True once saving has been turned off."""
        session = self._ctx.session
        if session is None or not session.is_connected:
            logger.info("No live RCON session, archiving without a save flush")
            return False
        commands = RconCommands(self._ctx)
        quiesced = False
        try:
            await commands.save_off()
            quiesced = True
            await commands.save_all(flush=True)
        except SupervisorError as exc:
            logger.warning("Save flush before backup failed: %s", exc)
        return quiesced

    async def _resume_saving(self) -> None:
        try:
            await RconCommands(self._ctx).save_on()
        except SupervisorError as exc:
            logger.error("Could not re-enable world saving: %s", exc)

    async def _start_workload(self) -> None:
        try:
            await self._ctx.gateway.start_workload()
        except SupervisorError as exc:
            logger.error("Could not restart server: %s", exc)

    # -- backup ---------------------------------------------------------------

    async def _archive(self, filename: str, compress: bool) -> int:
        target = shlex.quote(f"{ARCHIVE_MOUNT}/{filename}")
        world = shlex.quote(self._cfg.world_dir)
        flags = "czf" if compress else "cf"
        script = (
            f"cd {DATA_MOUNT} && "
            f"(tar {flags} {target} {world} || {{ rm -f {target}; exit 1; }}) && "
            f"stat -c%s {target}"
        )
        result = await self._run(script, self._mounts(data_ro=True, archives_ro=False))
        if result.exit_code != 0:
            raise ArchiveFailed(f"archive worker exited with {result.exit_code}: {_tail(result.output)}")
        sizes = _SIZE_LINE.findall(result.output)
        if not sizes:
            raise ArchiveFailed(f"archive size not reported: {_tail(result.output)}")
        return int(sizes[-1])

    async def create_backup(
        self,
        name: str = "backup",
        apply_retention: bool = True,
        stop_server: bool = False,
        compress: bool = True,
    ) -> BackupResult:
        """Archive the world directory into the backup volume."""
        validate_label(name)
        self._acquire()
        filename = f"{name}_{archive_timestamp()}.tar{'.gz' if compress else ''}"
        self._ctx.events.emit("backup-start", {"type": "backup", "filename": filename})
        try:
            self._progress("starting", "Starting backup...", filename=filename)
            quiesced = stopped = False
            if stop_server:
                if await self._workload_running():
                    self._progress("stopping", "Stopping server...")
                    try:
                        await self._ctx.gateway.stop_workload()
                        stopped = True
                    except SupervisorError as exc:
                        logger.warning("Could not stop server before backup: %s", exc)
            else:
                self._progress("saving", "Saving world...")
                quiesced = await self._quiesce()

            try:
                self._progress("running", "Creating archive...")
                size = await self._archive(filename, compress)
            finally:
                if quiesced:
                    self._progress("resuming", "Re-enabling world saving...")
                    await self._resume_saving()
                if stopped:
                    self._progress("restarting", "Restarting server...")
                    await self._start_workload()

            result = BackupResult(filename=filename, size_bytes=size, path=f"{ARCHIVE_MOUNT}/{filename}")

            if apply_retention:
                self._progress("retention", "Applying retention policy...")
                try:
                    await self.apply_retention()
                except SupervisorError as exc:
                    logger.warning("Retention after backup failed: %s", exc)

            self._progress("complete", "Backup complete!", filename=filename, size_bytes=size)
            self._ctx.events.emit("backup-complete", result)
            logger.info("Backup %s created (%d bytes)", filename, size)
            return result
        except Exception as exc:
            self._progress("failed", f"Backup failed: {exc}", filename=filename)
            self._ctx.events.emit("backup-failed", exc)
            raise
        finally:
            self._busy = False

    # -- restore --------------------------------------------------------------

    async def restore_backup(self, filename: str, auto_restart: bool = True) -> RestoreResult:
        """Replace the world with an archive; the previous world is moved aside, never deleted."""
        validate_archive_name(filename)
        self._acquire()
        self._ctx.events.emit("restore-start", {"filename": filename})
        try:
            self._progress("starting", "Starting restore...", filename=filename)
            was_running = await self._workload_running()
            if was_running:
                self._progress("stopping", "Stopping server...")
                await self._ctx.gateway.stop_workload()

            world = self._cfg.world_dir
            preserved = f"{world}.pre-restore-{archive_timestamp()}"
            flags = "xzf" if filename.endswith(".gz") else "xf"
            script = (
                f"cd {DATA_MOUNT} && "
                f"if [ -e {shlex.quote(world)} ]; then "
                f"mv {shlex.quote(world)} {shlex.quote(preserved)} && echo {PRESERVED_MARKER}; fi && "
                f"tar {flags} {shlex.quote(f'{ARCHIVE_MOUNT}/{filename}')} && "
                f"test -d {shlex.quote(world)} && echo {RESTORED_MARKER}"
            )
            self._progress("running", "Extracting backup...")
            try:
                result = await self._run(script, self._mounts(data_ro=False, archives_ro=True))
            except WorkerExecutionError as exc:
                # outcome unknown: put the previous world back only if it was moved
                restored = await self._roll_back(world, preserved, only_if_preserved=True)
                await self._restart_after_failure(was_running)
                raise RestoreFailed(
                    f"restore of {filename} failed: {exc}{_rollback_note(restored, preserved)}"
                ) from exc
            moved_aside = PRESERVED_MARKER in result.output

            if result.exit_code != 0 or RESTORED_MARKER not in result.output:
                restored = await self._roll_back(world, preserved) if moved_aside else None
                await self._restart_after_failure(was_running)
                raise RestoreFailed(
                    f"restore of {filename} failed (exit {result.exit_code}): {_tail(result.output)}"
                    f"{_rollback_note(restored, preserved)}"
                )

            if was_running or auto_restart:
                self._progress("restarting", "Restarting server...")
                await self._start_workload()

            message = f"World restored from {filename}"
            if moved_aside:
                message += f"; previous world kept as {preserved}"
            outcome = RestoreResult(success=True, message=message, preserved_as=preserved if moved_aside else None)
            self._progress("complete", "Restore complete!", filename=filename)
            self._ctx.events.emit("restore-complete", outcome)
            logger.info("%s", message)
            return outcome
        except Exception as exc:
            self._progress("failed", f"Restore failed: {exc}", filename=filename)
            self._ctx.events.emit("restore-failed", exc)
            raise
        finally:
            self._busy = False

    async def _restart_after_failure(self, was_running: bool) -> None:
        if was_running:
            self._progress("restarting", "Restarting server...")
            await self._start_workload()

    async def _roll_back(self, world: str, preserved: str, only_if_preserved: bool = False) -> bool | None:
        """Put ``preserved`` back as the world.

        Returns True when it is back in place, False when it stays at ``preserved``
        and None when nothing had been moved aside.
        """
        move = (
            f"rm -rf {shlex.quote(world)} && "
            f"mv {shlex.quote(preserved)} {shlex.quote(world)} && echo {ROLLED_BACK_MARKER}"
        )
        if only_if_preserved:
            move = f"if [ -e {shlex.quote(preserved)} ]; then {move}; fi"
        script = f"cd {DATA_MOUNT} && {move}"
        try:
            result = await self._run(script, self._mounts(data_ro=False, archives_ro=True))
        except SupervisorError as exc:
            logger.error("Rollback failed, previous world may remain at %s: %s", preserved, exc)
            return None if only_if_preserved else False
        if result.exit_code != 0:
            logger.error("Rollback failed, previous world remains at %s: %s", preserved, _tail(result.output))
            return False
        if only_if_preserved and ROLLED_BACK_MARKER not in result.output:
            return None
        logger.warning("Restore failed; previous world put back in place")
        return True

    # -- listing / deletion ---------------------------------------------------

    async def list_backups(self) -> list[BackupRecord]:
        """Archives in the backup volume, newest first."""
        script = (
            f"for f in {ARCHIVE_MOUNT}/*.tar {ARCHIVE_MOUNT}/*.tar.gz; do "
            f"[ -f \"$f\" ] && stat -c '%s %n' \"$f\"; done; true"
        )
        result = await self._run(script, self._mounts(data_ro=None, archives_ro=True))
        if result.exit_code != 0:
            raise BackupError(f"listing backups failed: {_tail(result.output)}")

        records = []
        now = datetime.now(timezone.utc)
        for line in result.output.splitlines():
            match = _LISTING_LINE.match(line.strip())
            if not match or not ARCHIVE_NAME.match(match.group(2)):
                continue
            name = match.group(2)
            created = parse_archive_timestamp(name) or now
            records.append(BackupRecord(name=name, size_bytes=int(match.group(1)), created_at=created))
        records.sort(key=lambda r: r.created_at, reverse=True)
        return records

    async def _delete(self, filenames: list[str]) -> None:
        targets = " ".join(shlex.quote(f"{ARCHIVE_MOUNT}/{validate_archive_name(f)}") for f in filenames)
        result = await self._run(f"rm -f {targets}", self._mounts(data_ro=None, archives_ro=False))
        if result.exit_code != 0:
            raise BackupError(f"deleting {', '.join(filenames)} failed: {_tail(result.output)}")

    async def delete_backup(self, filename: str) -> None:
        await self._delete([filename])
        logger.info("Deleted backup %s", filename)

    async def get_stats(self) -> BackupStats:
        records = await self.list_backups()
        dates = sorted(r.created_at for r in records)
        return BackupStats(
            count=len(records),
            total_bytes=sum(r.size_bytes for r in records),
            oldest=dates[0] if dates else None,
            newest=dates[-1] if dates else None,
        )

    async def apply_retention(
        self, max_count: int | None = None, max_total_bytes: int | None = None,
    ) -> list[str]:
        """Delete the oldest archives beyond the count and size bounds. Returns deleted names."""
        policy = RetentionPolicy(
            max_count=self.retention.max_count if max_count is None else max_count,
            max_total_bytes=self.retention.max_total_bytes if max_total_bytes is None else max_total_bytes,
        )
        doomed = select_for_deletion(await self.list_backups(), policy)
        if not doomed:
            return []
        names = [r.name for r in doomed]
        await self._delete(names)
        logger.info("Retention removed %d backup(s): %s", len(names), ", ".join(names))
        return names
