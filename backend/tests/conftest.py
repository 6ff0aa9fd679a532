"""Shared fixtures: a throwaway WordPress tree, its database and a sandbox over them."""

from pathlib import Path

import aiosqlite
import pytest

from devconsole.database import SiteDatabase
from devconsole.paths import SiteLayout
from devconsole.sandbox import ExecutionSandbox

HELLO_DOLLY = """<?php
/**
 * Plugin Name: Hello Dolly
 * Version: 1.7.2
 */
function hello_dolly() {}
"""

AKISMET = """<?php
/*
Plugin Name: Akismet Anti-Spam
Version: 5.3
*/
"""

SOLO = """<?php
/* Plugin Name: Solo */
"""


@pytest.fixture
def layout(tmp_path: Path) -> SiteLayout:
    root = tmp_path / "wordpress"
    content = root / "wp-content"
    plugins = content / "plugins"
    themes = content / "themes"

    (plugins / "hello-dolly").mkdir(parents=True)
    (plugins / "hello-dolly" / "hello.php").write_text(HELLO_DOLLY)
    (plugins / "hello-dolly" / "readme.txt").write_text("Hello Dolly readme")
    (plugins / "hello-dolly" / "inc").mkdir()
    (plugins / "hello-dolly" / "inc" / "lyrics.php").write_text("<?php // lyrics")
    (plugins / "akismet").mkdir()
    (plugins / "akismet" / "akismet.php").write_text(AKISMET)
    (plugins / "solo.php").write_text(SOLO)

    for slug, name in (("twentytwentyfour", "Twenty Twenty-Four"), ("astra", "Astra")):
        (themes / slug).mkdir(parents=True)
        (themes / slug / "style.css").write_text(f"/*\nTheme Name: {name}\nVersion: 1.0\n*/\n")
        (themes / slug / "index.php").write_text("<?php get_header();")

    (root / "wp-admin").mkdir()
    (root / "wp-admin" / "admin.php").write_text("<?php")
    (root / "wp-config.php").write_text("<?php define('DB_NAME', 'wp');")
    (root / "index.php").write_text("<?php require 'wp-blog-header.php';")
    (content / "debug.log").write_text("PHP Notice: Undefined index\n")

    return SiteLayout(
        wp_root=root,
        content_dir=content,
        plugins_dir=plugins,
        themes_dir=themes,
    )


@pytest.fixture
async def db(tmp_path: Path) -> SiteDatabase:
    database = SiteDatabase(str(tmp_path / "db" / "site.sqlite"))
    await database.init_db()
    await database.update_option("siteurl", "https://example.test")
    await database.update_option("active_plugins", ["hello-dolly/hello.php"])
    await database.update_option("stylesheet", "twentytwentyfour")
    async with aiosqlite.connect(database.db_path) as conn:
        await conn.executemany(
            "INSERT INTO wp_posts (post_title, post_type, post_date) VALUES (?, ?, ?)",
            [("Hello world", "post", "2024-01-01"), ("About", "page", "2024-01-02"),
             ("Second post", "post", "2024-01-03")],
        )
        await conn.commit()
    return database


@pytest.fixture
def sandbox(layout: SiteLayout, db: SiteDatabase) -> ExecutionSandbox:
    return ExecutionSandbox(layout, db)
