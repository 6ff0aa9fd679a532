"""Action execution layer - sandboxed to asset directories"""
import base64
import binascii
import logging
import os
import shutil
import sqlite3
import tempfile
import zipfile
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Tuple

from pydantic import ValidationError as PydanticValidationError

from devconsole.backups import BackupStore
from devconsole.config import settings
from devconsole.database import SiteDatabase, is_select_query
from devconsole.errors import ExecutionError, ValidationError
from devconsole.models import (
    ACTION_ARGS, ActionRequest,
    DeleteAssetArgs, EmptyArgs, ExecuteArbitraryDbQueryArgs, ExecuteSafeDbQueryArgs,
    GetAssetFilesArgs, GetFileHistoryArgs, InstallAssetArgs, ListAssetsArgs,
    ReadFileContentArgs, RestoreFileArgs, ToggleAssetStatusArgs, WriteFileContentArgs,
)
from devconsole.paths import (
    SiteLayout, asset_base_dir, has_traversal, normalize_relative_path,
    resolve_path, sanitize_file_name,
)
from devconsole.site import WordPressSite, read_define

logger = logging.getLogger(__name__)

# Skipped when listing the installation root
ROOT_EXCLUSIONS = (
    "wp-admin", "wp-includes", ".git", ".github", ".vscode", "node_modules", "vendor",
    "wp-content/uploads", "wp-content/cache", "wp-content/upgrade",
    "wp-config.php", ".htaccess", "license.txt", "readme.html",
)


def _describe_validation(action: str, error: PydanticValidationError) -> str:
    problems = []
    for err in error.errors():
        field = ".".join(str(loc) for loc in err["loc"]) or "payload"
        problems.append(f"{field}: {err['msg']}")
    return f"Invalid arguments for {action}: " + "; ".join(problems)


# Mode given to files that did not exist before, before the umask applies
NEW_FILE_MODE = 0o644


def _current_umask() -> int:
    mask = os.umask(0)
    os.umask(mask)
    return mask


def atomic_write(path: Path, data: bytes):
    """
    Write through a temp file in the same directory so the target is never
    half-written. An existing file keeps its permission bits; a new one gets
    NEW_FILE_MODE filtered by the umask.
    """
    fd, tmp = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, "wb") as f:
            f.write(data)
        if path.exists():
            shutil.copymode(path, tmp)
        else:
            os.chmod(tmp, NEW_FILE_MODE & ~_current_umask())
        os.replace(tmp, path)
    except BaseException:
        if os.path.exists(tmp):
            os.unlink(tmp)
        raise


class ExecutionSandbox:
    """Execute approved actions against one WordPress installation"""

    def __init__(self, layout: SiteLayout, db: SiteDatabase, backups: BackupStore = None,
                 max_site_backup_bytes: int = None):
        self.layout = layout
        self.db = db
        self.backups = backups or BackupStore(layout.backup_dirname)
        self.max_site_backup_bytes = max_site_backup_bytes or settings.site_backup_max_bytes
        self.site = WordPressSite(layout, db)

    async def execute(self, request: ActionRequest) -> Any:
        """
        Validate the payload for the named action and run it.

        Raises ValidationError before any I/O for unknown actions, bad
        arguments and paths outside the asset; ExecutionError for I/O
        failures.
        """
        args_model = ACTION_ARGS.get(request.action)
        if args_model is None:
            raise ValidationError(f'The action "{request.action}" is not a known function.')
        try:
            args = args_model.model_validate(request.payload)
        except PydanticValidationError as e:
            raise ValidationError(_describe_validation(request.action, e)) from e

        handler = getattr(self, f"action_{request.action}")
        try:
            result = await handler(args)
        except ValidationError as e:
            logger.warning("Rejected %s: %s", request.action, e)
            raise
        except OSError as e:
            logger.exception("I/O failure in %s", request.action)
            raise ExecutionError(f"{request.action} failed: {e.strerror or e}") from e
        except sqlite3.Error as e:
            logger.exception("Database failure in %s", request.action)
            raise ExecutionError(f"{request.action} failed: database error: {e}") from e

        logger.info("Executed %s", request.action)
        return result

    # --- discovery --------------------------------------------------------

    async def action_ping(self, args: EmptyArgs) -> Dict[str, Any]:
        return {"message": "pong", "connector_version": settings.connector_version}

    async def action_list_assets(self, args: ListAssetsArgs) -> List[Dict[str, Any]]:
        return await self.site.list_assets(args.asset_type)

    async def action_get_asset_files(self, args: GetAssetFilesArgs) -> List[Dict[str, str]]:
        asset = args.asset
        base = asset_base_dir(self.layout, asset)
        if not base.is_dir():
            raise ValidationError(f"Asset directory not found for {asset.identifier}.")
        real_base = base.resolve()

        files = []
        for dirpath, dirnames, filenames in os.walk(real_base):
            rel_dir = Path(dirpath).relative_to(real_base)
            dirnames[:] = [
                d for d in dirnames
                if d != self.layout.backup_dirname
                and not (asset.type == "root" and self._excluded((rel_dir / d).as_posix()))
            ]
            for filename in filenames:
                rel = (rel_dir / filename).as_posix()
                if asset.type == "root" and self._excluded(rel):
                    continue
                files.append({"name": rel})
        files.sort(key=lambda f: f["name"])
        return files

    @staticmethod
    def _excluded(rel: str) -> bool:
        return any(rel == item or rel.startswith(item + "/") for item in ROOT_EXCLUSIONS)

    async def action_read_file_content(self, args: ReadFileContentArgs) -> Dict[str, str]:
        path = resolve_path(self.layout, args.asset, args.relative_path, must_exist=True)
        return {"content": path.read_text(encoding="utf-8", errors="replace")}

    async def action_get_file_history(self, args: GetFileHistoryArgs) -> List[Dict[str, Any]]:
        path = resolve_path(self.layout, args.asset, args.relative_path)
        return [record.to_payload() for record in self.backups.list_backups(path)]

    async def action_get_debug_log(self, args: EmptyArgs) -> Dict[str, str]:
        log_path = self.layout.content_dir / "debug.log"
        if not log_path.is_file():
            raise ValidationError("debug.log file does not exist or is not readable. Ensure WP_DEBUG_LOG is enabled in wp-config.php.")
        return {"content": log_path.read_text(encoding="utf-8", errors="replace")}

    async def action_run_security_scan(self, args: EmptyArgs) -> List[Dict[str, str]]:
        wp_config = self.layout.wp_root / "wp-config.php"
        debug = (read_define(wp_config, "WP_DEBUG") or "").lower() in ("true", "1")
        file_edit_disabled = (read_define(wp_config, "DISALLOW_FILE_EDIT") or "").lower() in ("true", "1")
        admin_exists = await self.db.user_exists("admin")

        def check(check_id, title, failed, severity, description, recommendation):
            return {
                "id": check_id,
                "title": title,
                "status": "fail" if failed else "pass",
                "severity": severity,
                "description": description,
                "recommendation": recommendation,
            }

        return [
            check("wp_debug", "WP_DEBUG is Disabled on Live Site", debug, "High",
                  "WP_DEBUG should be turned off on a live website as it can expose sensitive information.",
                  "Set WP_DEBUG to false in your wp-config.php file for production environments."),
            check("default_admin", 'Default "admin" User Does Not Exist', admin_exists, "High",
                  'Using the default "admin" username makes brute-force attacks easier.',
                  'Create a new administrator account with a unique username and delete the default "admin" account.'),
            check("file_edit", "File Editing Status", file_edit_disabled, "Medium",
                  "File editing must be enabled for the Dev-Console to write to files. "
                  "If disabled, write operations will fail.",
                  "Set define('DISALLOW_FILE_EDIT', false); in wp-config.php or remove the line defining it."),
            check("db_prefix", "Database Prefix is Not Default", self.db.prefix == "wp_", "Medium",
                  'Using the default "wp_" database prefix makes SQL injection attacks easier.',
                  "Use a unique database prefix. This requires a more involved process to change on an existing site."),
        ]

    # --- state changes ----------------------------------------------------

    async def action_toggle_asset_status(self, args: ToggleAssetStatusArgs) -> Dict[str, str]:
        await self.site.set_active(args.asset_type, args.asset_identifier, args.new_status)
        return {"status": "ok"}

    async def action_delete_asset(self, args: DeleteAssetArgs) -> Dict[str, str]:
        await self.site.delete(args.asset_type, args.asset_identifier)
        return {"status": "deleted"}

    async def action_write_file_content(self, args: WriteFileContentArgs) -> Dict[str, Any]:
        path = resolve_path(self.layout, args.asset, args.relative_path, allow_backups=False)
        try:
            data = args.content.encode("utf-8")
        except UnicodeEncodeError as e:
            raise ValidationError(f"File content is not valid text (position {e.start}): {args.relative_path}") from e
        backup = None
        if path.exists():
            if not path.is_file():
                raise ValidationError("Target path is a directory.")
            # Raises ExecutionError; nothing is written without a snapshot
            backup = self.backups.snapshot(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        try:
            atomic_write(path, data)
        except OSError as e:
            raise ExecutionError(
                "Failed to write to file. Ensure the web server has write access to the file: "
                f"{args.relative_path}"
            ) from e
        return {"status": "ok", "backup": backup.to_payload() if backup else None}

    async def action_restore_file(self, args: RestoreFileArgs) -> Dict[str, str]:
        path = resolve_path(self.layout, args.asset, args.relative_path, allow_backups=False)
        record = self.backups.lookup(path, args.backup_path)
        self.backups.restore(record)
        return {"status": "ok"}

    async def action_install_asset(self, args: InstallAssetArgs) -> Dict[str, Any]:
        slug = sanitize_file_name(args.asset_name)
        if not slug:
            raise ValidationError("Invalid asset name.")
        base = self.layout.plugins_dir if args.asset_type == "plugin" else self.layout.themes_dir
        asset_dir = base / slug
        if asset_dir.exists():
            raise ValidationError(f"{args.asset_type.capitalize()} folder '{slug}' already exists.")

        # Every entry is validated and decoded before the first directory is made
        planned: List[Tuple[str, Path, bytes]] = []
        for entry in args.files:
            if has_traversal(entry.name):
                raise ValidationError(f"Invalid file name: {entry.name}")
            rel = normalize_relative_path(entry.name)
            if not rel:
                raise ValidationError(f"Invalid file name: {entry.name}")
            try:
                data = base64.b64decode(entry.content, validate=True)
            except (binascii.Error, ValueError) as e:
                raise ValidationError(f"File content is not valid base64: {entry.name}") from e
            planned.append((rel, asset_dir / rel, data))

        real_base = base.resolve()
        for rel, target, _ in planned:
            if real_base not in target.resolve().parents:
                raise ValidationError(f"Invalid file name: {rel}")

        try:
            asset_dir.mkdir(parents=True)
            for _, target, _ in planned:
                target.parent.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise ExecutionError(f"Could not create directory for the new {args.asset_type}. Check server permissions.") from e

        # No rollback: files written before a failure stay in place
        for rel, target, data in planned:
            try:
                target.write_bytes(data)
            except OSError as e:
                logger.warning("Install of %s stopped at %s; partial tree left in %s", slug, rel, asset_dir)
                raise ExecutionError(f"Failed to write file: {rel}") from e

        logger.info("Installed %s %s (%d files)", args.asset_type, slug, len(planned))
        return {"status": "ok", "identifier": slug, "files": [rel for rel, _, _ in planned]}

    # --- site backups -----------------------------------------------------

    async def action_create_site_backup(self, args: EmptyArgs) -> Dict[str, Any]:
        source = self.layout.content_dir.resolve()
        backup_dir = self.layout.site_backups_dir
        try:
            backup_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise ExecutionError("Could not create the site backup directory. Check permissions.") from e
        real_backup_dir = backup_dir.resolve()

        stamp = datetime.now().strftime("%Y-%m-%d-%H-%M-%S")
        zip_path = backup_dir / f"site-backup-{stamp}.zip"
        suffix = 1
        while zip_path.exists():
            zip_path = backup_dir / f"site-backup-{stamp}-{suffix}.zip"
            suffix += 1

        try:
            with zipfile.ZipFile(zip_path, "x", compression=zipfile.ZIP_DEFLATED) as archive:
                for dirpath, dirnames, filenames in os.walk(source):
                    current = Path(dirpath)
                    dirnames[:] = [d for d in dirnames if (current / d).resolve() != real_backup_dir]
                    for filename in filenames:
                        file_path = current / filename
                        archive.write(file_path, file_path.relative_to(source).as_posix())
            size = zip_path.stat().st_size
            if size > self.max_site_backup_bytes:
                raise ExecutionError(
                    f"Backup file is {size} bytes, over the {self.max_site_backup_bytes} byte limit, and cannot be "
                    "transferred directly. Please use a dedicated backup solution."
                )
            content = zip_path.read_bytes()
        except BaseException:
            if zip_path.exists():
                zip_path.unlink()
            raise

        logger.info("Created site backup %s (%d bytes)", zip_path.name, size)
        return {"status": "ok", "fileName": zip_path.name, "content": base64.b64encode(content).decode("ascii")}

    async def action_list_site_backups(self, args: EmptyArgs) -> List[Dict[str, Any]]:
        backup_dir = self.layout.site_backups_dir
        if not backup_dir.is_dir():
            return []
        backups = []
        for entry in backup_dir.iterdir():
            if entry.is_file() and entry.suffix == ".zip":
                stat = entry.stat()
                backups.append({"name": entry.name, "size": stat.st_size, "date": int(stat.st_mtime)})
        backups.sort(key=lambda b: (b["date"], b["name"]), reverse=True)
        return backups

    # --- database ---------------------------------------------------------

    async def action_get_db_tables(self, args: EmptyArgs) -> List[str]:
        return await self.db.list_tables()

    async def action_execute_arbitrary_db_query(self, args: ExecuteArbitraryDbQueryArgs) -> List[Dict[str, Any]]:
        if not is_select_query(args.query):
            raise ValidationError("Only SELECT queries are permitted.")
        return await self.db.run_select(args.query)

    async def action_execute_safe_db_query(self, args: ExecuteSafeDbQueryArgs) -> List[Dict[str, Any]]:
        params = args.params
        if args.query_type == "get_options":
            names = params.get("optionNames") or []
            if not isinstance(names, list):
                raise ValidationError("optionNames must be a list of option names.")
            return await self.db.get_options(names)
        elif args.query_type == "list_posts":
            try:
                limit = int(params.get("limit", 10))
                offset = int(params.get("offset", 0))
            except (TypeError, ValueError) as e:
                raise ValidationError("limit and offset must be integers.") from e
            return await self.db.list_posts(params.get("postType", "post"), limit, offset)
        else:
            raise ValidationError("Unsupported or invalid query type specified.")


def build_sandbox(config=None) -> ExecutionSandbox:
    """Sandbox for the installation described by the given (or global) settings"""
    config = config or settings
    layout = SiteLayout.from_settings(config)
    return ExecutionSandbox(
        layout,
        SiteDatabase(config.db_path, config.table_prefix),
        max_site_backup_bytes=config.site_backup_max_bytes,
    )
