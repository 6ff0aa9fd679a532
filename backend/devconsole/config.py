"""Configuration management"""
from pathlib import Path
from typing import Literal
from pydantic_settings import BaseSettings

class Settings(BaseSettings):
    # Server
    host: str = "0.0.0.0"
    port: int = 8001
    
    # WordPress installation
    wp_root: str = "./wordpress"
    content_subdir: str = "wp-content"
    plugins_subdir: str = "wp-content/plugins"
    themes_subdir: str = "wp-content/themes"
    backup_dirname: str = ".dc-backups"
    site_backup_subdir: str = "uploads/dev-console-backups/site-backups"
    site_backup_max_bytes: int = 50 * 1024 * 1024
    
    # Database
    db_path: str = "./wordpress/wp-content/database.sqlite"
    table_prefix: str = "wp_"
    
    # Connector credentials (both headers must match)
    connector_key: str = ""
    api_key: str = ""
    connector_version: str = "2.7.0"
    
    # Sandbox transport; empty url runs the sandbox in-process
    sandbox_url: str = ""
    sandbox_timeout: float = 30.0
    
    # Session policy
    auto_execute: bool = False
    
    # LLM (OpenAI-compatible)
    llm_api_key: str = ""
    llm_base_url: str = ""
    llm_model: str = "gpt-4o"
    system_instruction: str = (
        "You are a helpful WordPress developer assistant integrated into a management app "
        "called Dev-Console Co-Pilot. You can perform actions on the user's connected "
        "WordPress site by calling available tools. If a file path is rejected, call "
        "get_asset_files to discover valid paths. Be concise and helpful."
    )
    
    # Logging
    log_level: str = "INFO"
    log_format: Literal["simple", "detailed"] = "detailed"
    
    # CORS
    cors_origins: str = "*"
    
    class Config:
        env_file = ".env"
        case_sensitive = False
        extra = "allow"

settings = Settings()

# Expand installation paths
settings.wp_root = str(Path(settings.wp_root).expanduser())
settings.db_path = str(Path(settings.db_path).expanduser())
