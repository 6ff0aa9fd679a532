"""Plugins and themes of a WordPress installation"""
import logging
import re
import shutil
from pathlib import Path
from typing import Any, Dict, List, Optional

from devconsole.database import SiteDatabase
from devconsole.errors import ExecutionError, ValidationError
from devconsole.paths import SiteLayout, is_within

logger = logging.getLogger(__name__)

HEADER_BYTES = 8192


def read_header(path: Path, field: str) -> Optional[str]:
    """Value of a 'Field: value' line in a file's leading comment block"""
    try:
        with open(path, "r", encoding="utf-8", errors="replace") as f:
            head = f.read(HEADER_BYTES)
    except OSError:
        return None
    match = re.search(rf"^[ \t/*#@]*{re.escape(field)}:(.*)$", head, re.MULTILINE | re.IGNORECASE)
    if not match:
        return None
    return re.sub(r"\s*(?:\*/|\?>).*$", "", match.group(1)).strip() or None


def read_define(path: Path, name: str) -> Optional[str]:
    """Raw value of a define('NAME', value) in a PHP config file"""
    try:
        source = path.read_text(encoding="utf-8", errors="replace")
    except OSError:
        return None
    match = re.search(rf"\bdefine\(\s*['\"]{re.escape(name)}['\"]\s*,\s*([^)]+?)\s*\)", source)
    return match.group(1).strip("'\"") if match else None


class WordPressSite:
    """Asset discovery and activation state, bound to one layout and database"""

    def __init__(self, layout: SiteLayout, db: SiteDatabase):
        self.layout = layout
        self.db = db

    def _plugin_files(self) -> List[Path]:
        plugins_dir = self.layout.plugins_dir
        if not plugins_dir.is_dir():
            return []
        files = [p for p in plugins_dir.glob("*.php") if p.is_file()]
        for folder in plugins_dir.iterdir():
            if folder.is_dir() and not folder.name.startswith("."):
                files.extend(p for p in folder.glob("*.php") if p.is_file())
        return files

    def plugins(self) -> Dict[str, Dict[str, Any]]:
        """Installed plugins keyed by identifier ('folder/main.php' or 'main.php')"""
        found = {}
        for path in self._plugin_files():
            name = read_header(path, "Plugin Name")
            if not name:
                continue
            identifier = path.relative_to(self.layout.plugins_dir).as_posix()
            found[identifier] = {"name": name, "version": read_header(path, "Version") or "", "path": path}
        return found

    def themes(self) -> Dict[str, Dict[str, Any]]:
        """Installed themes keyed by slug"""
        themes_dir = self.layout.themes_dir
        found = {}
        if not themes_dir.is_dir():
            return found
        for folder in themes_dir.iterdir():
            style = folder / "style.css"
            if not style.is_file():
                continue
            name = read_header(style, "Theme Name")
            if name:
                found[folder.name] = {"name": name, "version": read_header(style, "Version") or "", "path": folder}
        return found

    async def active_plugins(self) -> List[str]:
        value = await self.db.get_option("active_plugins", [])
        return list(value) if isinstance(value, list) else []

    async def active_theme(self) -> Optional[str]:
        return await self.db.get_option("stylesheet")

    def _require(self, asset_type: str, identifier: str) -> Dict[str, Any]:
        assets = self.plugins() if asset_type == "plugin" else self.themes()
        if identifier not in assets:
            raise ValidationError(f"Unknown {asset_type}: {identifier}")
        return assets[identifier]

    async def list_assets(self, asset_type: str) -> List[Dict[str, Any]]:
        results = []
        if asset_type == "plugin":
            active = set(await self.active_plugins())
            for identifier, details in sorted(self.plugins().items()):
                results.append({
                    "type": "plugin",
                    "name": details["name"],
                    "identifier": identifier,
                    "version": details["version"],
                    "isActive": identifier in active,
                })
        else:
            active_theme = await self.active_theme()
            for slug, details in sorted(self.themes().items()):
                results.append({
                    "type": "theme",
                    "name": details["name"],
                    "identifier": slug,
                    "version": details["version"],
                    "isActive": slug == active_theme,
                })
        return results

    async def set_active(self, asset_type: str, identifier: str, active: bool):
        self._require(asset_type, identifier)
        if asset_type == "plugin":
            plugins = await self.active_plugins()
            if active and identifier not in plugins:
                plugins.append(identifier)
            elif not active and identifier in plugins:
                plugins.remove(identifier)
            await self.db.update_option("active_plugins", plugins)
        elif active:
            await self.db.update_option("stylesheet", identifier)
            await self.db.update_option("template", identifier)
        else:
            raise ValidationError("Cannot deactivate the active theme. Switch to another theme to deactivate this one.")
        logger.info("%s %s %s", asset_type, identifier, "activated" if active else "deactivated")

    async def delete(self, asset_type: str, identifier: str):
        details = self._require(asset_type, identifier)
        if asset_type == "plugin":
            main_file = details["path"]
            target = main_file if main_file.parent == self.layout.plugins_dir else main_file.parent
            base = self.layout.plugins_dir
        else:
            if identifier == await self.active_theme():
                raise ValidationError("Cannot delete the active theme.")
            target = details["path"]
            base = self.layout.themes_dir

        real_base = base.resolve()
        real_target = target.resolve()
        if real_target == real_base or not is_within(real_target, real_base):
            raise ValidationError(f"Refusing to delete outside the {asset_type}s directory.")

        try:
            if real_target.is_dir():
                shutil.rmtree(real_target)
            else:
                real_target.unlink()
        except OSError as e:
            raise ExecutionError(f"Failed to delete {asset_type}: {e}") from e

        if asset_type == "plugin":
            plugins = await self.active_plugins()
            if identifier in plugins:
                plugins.remove(identifier)
                await self.db.update_option("active_plugins", plugins)
        logger.info("Deleted %s %s", asset_type, identifier)
