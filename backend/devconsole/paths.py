"""Sandbox base directories and path validation"""
import re
from pathlib import Path, PurePosixPath
from pydantic import BaseModel

from devconsole.config import Settings
from devconsole.errors import ValidationError
from devconsole.models import AssetReference

# Files under the installation root that may never be touched
SENSITIVE_ROOT_FILES = frozenset({"wp-config.php", ".htaccess"})

_RESERVED_CHARS = re.compile(r'[<>:"|?*\x00-\x1f]')
_DRIVE_PREFIX = re.compile(r"^[A-Za-z]:")
_SLUG_UNSAFE = re.compile(r"[^A-Za-z0-9._-]+")


class SiteLayout(BaseModel):
    """Directory layout of one WordPress installation"""
    wp_root: Path
    content_dir: Path
    plugins_dir: Path
    themes_dir: Path
    backup_dirname: str = ".dc-backups"
    # Relative to content_dir
    site_backup_subdir: str = "uploads/dev-console-backups/site-backups"

    @property
    def site_backups_dir(self) -> Path:
        return self.content_dir / self.site_backup_subdir

    @classmethod
    def from_settings(cls, settings: Settings) -> "SiteLayout":
        root = Path(settings.wp_root)
        return cls(
            wp_root=root,
            content_dir=root / settings.content_subdir,
            plugins_dir=root / settings.plugins_subdir,
            themes_dir=root / settings.themes_subdir,
            backup_dirname=settings.backup_dirname,
            site_backup_subdir=settings.site_backup_subdir,
        )


def _segments(path: str):
    return path.replace("\\", "/").split("/")


def has_traversal(path: str) -> bool:
    """True if any segment of the path is '..'"""
    return any(seg.strip() == ".." for seg in _segments(path))


def sanitize_segment(segment: str) -> str:
    return _RESERVED_CHARS.sub("", segment).strip()


def normalize_relative_path(path: str) -> str:
    """
    Drop absolute prefixes, empty, '.' and '..' segments, and strip reserved
    characters from what remains. Returns '' if nothing is left.
    """
    path = _DRIVE_PREFIX.sub("", path.strip())
    parts = []
    for seg in _segments(path):
        if seg.strip() in ("", ".", ".."):
            continue
        clean = sanitize_segment(seg)
        if clean and clean not in (".", ".."):
            parts.append(clean)
    return "/".join(parts)


def sanitize_file_name(name: str) -> str:
    """Folder-safe slug for a new asset"""
    slug = _SLUG_UNSAFE.sub("-", name.strip().replace(" ", "-"))
    return slug.strip(".-_")


def is_within(path: Path, base: Path) -> bool:
    """Check that a resolved path is base itself or one of its descendants"""
    try:
        path.relative_to(base)
        return True
    except ValueError:
        return False


def asset_base_dir(layout: SiteLayout, asset: AssetReference) -> Path:
    """Directory that file operations on the asset are confined to"""
    if asset.type == "root" or asset.identifier == "root":
        return layout.wp_root

    if has_traversal(asset.identifier):
        raise ValidationError("Invalid asset identifier.")
    identifier = normalize_relative_path(asset.identifier)
    if not identifier:
        raise ValidationError("Invalid asset identifier.")

    if asset.type == "plugin":
        # "folder/main.php" lives in folder; a single-file plugin lives in the plugins dir
        parent = str(PurePosixPath(identifier).parent)
        return layout.plugins_dir if parent == "." else layout.plugins_dir / parent
    if "/" in identifier:
        raise ValidationError("Invalid theme identifier.")
    return layout.themes_dir / identifier


def resolve_path(
    layout: SiteLayout,
    asset: AssetReference,
    relative_path: str,
    must_exist: bool = False,
    allow_backups: bool = True,
) -> Path:
    """
    Resolve a path inside an asset's base directory.

    The canonical (symlink-resolved) target must be a descendant of the
    canonical base directory; otherwise ValidationError is raised before any
    read or write happens.
    """
    if has_traversal(relative_path):
        raise ValidationError("Invalid file path or directory traversal attempt.")
    clean = normalize_relative_path(relative_path)
    if not clean:
        raise ValidationError("Invalid file path.")

    base = asset_base_dir(layout, asset)
    real_base = base.resolve()
    target = (base / clean).resolve()

    if target == real_base or not is_within(target, real_base):
        raise ValidationError("Invalid file path or directory traversal attempt.")
    if asset.type == "root" and target.name in SENSITIVE_ROOT_FILES:
        raise ValidationError("Editing this sensitive file is not permitted.")
    if not allow_backups and layout.backup_dirname in target.relative_to(real_base).parts:
        raise ValidationError("Backup files cannot be written directly; use restore_file.")
    if must_exist and not target.is_file():
        raise ValidationError("File not found or not readable.")
    return target
