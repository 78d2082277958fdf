#!/usr/bin/env python3
"""
BrpirCatalog - social game catalog.
Core helpers shared by the web app and the command line: logging, configuration,
status/platform presentation, catalog filtering and webhook delivery.
"""

import argparse
import json
import logging
import os
import sys
from typing import Dict, List, Optional

import requests
from colorama import init, Fore, Style

# Initialize colorama for cross-platform colored terminal output
init(autoreset=True)

# ---------------------------------------------------------------------------
# Logging setup
# ---------------------------------------------------------------------------

def setup_logging(level: str = 'WARNING') -> logging.Logger:
    """Configure the root BrpirCatalog logger.

    Args:
        level: Log level string (DEBUG, INFO, WARNING, ERROR, CRITICAL).
               Defaults to WARNING so normal use is quiet.

    Returns:
        Configured logger instance.
    """
    numeric = getattr(logging, level.upper(), logging.WARNING)
    logger = logging.getLogger('brpir')
    if not logger.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter('[%(levelname)s] %(name)s: %(message)s'))
        logger.addHandler(handler)
    logger.setLevel(numeric)
    return logger


# Module-level logger used throughout brpir.py
logger = setup_logging(os.getenv('BRPIR_LOG_LEVEL', 'WARNING'))


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------

DEFAULT_CONFIG = {
    'database_url': 'sqlite:///brpir_catalog.db',
    'secret_key': '',
    'log_level': 'INFO',
    'webhook_url': '',
}

_ENV_OVERRIDES = {
    'DATABASE_URL': 'database_url',
    'BRPIR_SECRET_KEY': 'secret_key',
    'BRPIR_LOG_LEVEL': 'log_level',
    'BRPIR_WEBHOOK_URL': 'webhook_url',
}


def load_config(config_path: str = 'config.json') -> Dict:
    """Load configuration from an optional JSON file with environment overrides.

    Environment variables take precedence over config file values:
    - DATABASE_URL overrides database_url
    - BRPIR_SECRET_KEY overrides secret_key
    - BRPIR_LOG_LEVEL overrides log_level
    - BRPIR_WEBHOOK_URL overrides webhook_url

    A missing or unreadable file is not an error; the defaults apply.
    """
    config = dict(DEFAULT_CONFIG)
    if config_path and os.path.exists(config_path):
        try:
            with open(config_path, 'r') as f:
                file_config = json.load(f)
            if isinstance(file_config, dict):
                config.update(file_config)
        except (OSError, json.JSONDecodeError) as e:
            logger.warning("Could not load %s: %s", config_path, e)

    for env_key, config_key in _ENV_OVERRIDES.items():
        if os.getenv(env_key):
            config[config_key] = os.getenv(env_key)
    return config


# ---------------------------------------------------------------------------
# Presentation helpers
# ---------------------------------------------------------------------------

STATUSES = ('playing', 'completed', 'backlog', 'dropped')

STATUS_LABELS = {
    'playing': 'Playing',
    'completed': 'Completed',
    'backlog': 'Backlog',
    'dropped': 'Dropped',
}

STATUS_COLORS = {
    'playing': 'primary',
    'completed': 'accent',
    'backlog': 'secondary',
    'dropped': 'destructive',
}

_PLATFORM_ICONS = (
    (('pc', 'windows'), 'https://img.icons8.com/color/48/windows-10.png'),
    (('playstation', 'ps4', 'ps5'), 'https://img.icons8.com/color/48/playstation.png'),
    (('xbox',), 'https://img.icons8.com/color/48/xbox.png'),
    (('nintendo', 'switch'), 'https://img.icons8.com/color/48/nintendo-switch.png'),
)
DEFAULT_PLATFORM_ICON = 'https://img.icons8.com/color/48/game-controller.png'


def status_label(status: str) -> str:
    """Human label for a game status; unknown values pass through unchanged."""
    return STATUS_LABELS.get(status, status)


def status_color(status: str) -> str:
    return STATUS_COLORS.get(status, 'muted')


def platform_icon(platform: str) -> str:
    """Return an icon URL for *platform* using a case-insensitive substring match."""
    lower = (platform or '').lower()
    for needles, url in _PLATFORM_ICONS:
        if any(needle in lower for needle in needles):
            return url
    return DEFAULT_PLATFORM_ICON


def display_name(profile: Optional[Dict]) -> str:
    """Display name falling back to the username."""
    if not profile:
        return ''
    return profile.get('display_name') or profile.get('username') or ''


def filter_games(games: List[Dict], status: str = 'all', platform: str = 'all',
                 search: str = '') -> List[Dict]:
    """Filter a catalog by status, exact platform and title substring.

    ``'all'`` (or an empty value) disables the status/platform filters; the
    title search is case-insensitive.
    """
    needle = (search or '').strip().lower()
    return [
        g for g in games
        if (not status or status == 'all' or g.get('status') == status)
        and (not platform or platform == 'all' or g.get('platform') == platform)
        and needle in (g.get('title') or '').lower()
    ]


# ---------------------------------------------------------------------------
# Webhooks
# ---------------------------------------------------------------------------

def send_webhook(url: str, payload: Dict, timeout: int = 5) -> bool:
    """POST *payload* as JSON to *url* (Discord / Slack compatible webhook).

    Returns:
        True on a 2xx response, False on any network or HTTP error.
    """
    _wh_log = logging.getLogger('brpir.webhook')
    try:
        resp = requests.post(url, json=payload, timeout=timeout)
        resp.raise_for_status()
        _wh_log.info("Webhook delivered to %s (HTTP %s)", url, resp.status_code)
        return True
    except requests.RequestException as e:
        _wh_log.warning("Webhook delivery failed (%s): %s", url, e)
        return False


# ---------------------------------------------------------------------------
# Command line
# ---------------------------------------------------------------------------

def _print_members(profile_service, db) -> int:
    members = profile_service.list_members(db)
    if not members:
        print(f"{Fore.YELLOW}No members yet.")
        return 0
    print(f"{Fore.CYAN}{Style.BRIGHT}Members ({len(members)})")
    for member in members:
        name = member.get('display_name') or member['username']
        print(f"  {Fore.GREEN}{name}{Style.RESET_ALL} @{member['username']}")
    return 0


def _print_stats(profile_service, game_service, db, username: str) -> int:
    from catalog.insights import personal_stats

    profile = profile_service.get_by_username(db, username)
    if not profile:
        print(f"{Fore.RED}Error: member '{username}' not found")
        return 1
    stats = personal_stats(game_service.list_for(db, profile['id']))
    print(f"{Fore.CYAN}{Style.BRIGHT}{display_name(profile)} (@{profile['username']})")
    print(f"  Total games:    {Fore.GREEN}{stats['total_games']}")
    for item in stats['status_distribution']:
        print(f"  {item['name'] + ':':<15} {item['value']}")
    print(f"  Completion:     {stats['completion_percent']}% of the catalog")
    print(f"  Average rating: {Fore.YELLOW}{stats['average_rating']:.1f}/10")
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point"""
    parser = argparse.ArgumentParser(
        description='BrpirCatalog - social game catalog',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python3 brpir.py members           # List every member
  python3 brpir.py stats alice       # Show alice's catalog statistics
        """
    )
    parser.add_argument('--config', '-c', default='config.json',
                        help='Path to config file (default: config.json)')
    sub = parser.add_subparsers(dest='command')
    sub.add_parser('members', help='List members')
    stats_parser = sub.add_parser('stats', help='Show catalog statistics for a member')
    stats_parser.add_argument('username')
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return 1

    config = load_config(args.config)

    import database
    from catalog.services import ProfileService, GameService

    database.configure(config['database_url'])
    if not database.init_db():
        print(f"{Fore.RED}Error: database not available at {config['database_url']}")
        return 1

    db = database.SessionLocal()
    try:
        profile_service = ProfileService(database)
        if args.command == 'members':
            return _print_members(profile_service, db)
        return _print_stats(profile_service, GameService(database), db, args.username)
    finally:
        db.close()


if __name__ == "__main__":
    sys.exit(main())
