"""Risk classification of action names"""
from devconsole.models import RiskTier

# Destructive or irreversible
HIGH_RISK_ACTIONS = frozenset({
    "write_file_content",
    "delete_asset",
    "install_asset",
    "execute_arbitrary_db_query",
    "restore_file",
})

# Reversible state changes, or new files outside any asset
MEDIUM_RISK_ACTIONS = frozenset({
    "toggle_asset_status",
    "create_site_backup",
})

WARNINGS = {
    "high": "HIGH RISK: This action is potentially destructive and irreversible.",
    "medium": "Medium Risk: This will change the state of your site.",
    "low": "Please review the action carefully before proceeding.",
}


def assess_risk(action: str) -> RiskTier:
    """Assess risk tier of an action; unknown names are low risk"""
    if action in HIGH_RISK_ACTIONS:
        return "high"
    elif action in MEDIUM_RISK_ACTIONS:
        return "medium"
    else:
        return "low"


def warning_text(action: str) -> str:
    """User-facing warning for the confirmation prompt"""
    return WARNINGS[assess_risk(action)]
