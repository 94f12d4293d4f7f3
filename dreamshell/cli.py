"""
dreamshell CLI.

Usage:
    dreamshell init                     # Create sessions/ and logs/ under the home dir
    dreamshell create-env [--force]     # Write .env with a random JWT_SECRET
    dreamshell token --sub NAME         # Print a signed bearer token
    dreamshell serve                    # Run the API server in the foreground
    dreamshell config show              # Show current config
    dreamshell config set KEY VALUE     # Set a config value
    dreamshell config get KEY           # Get a config value
"""

import argparse
import base64
import secrets
import sys
from pathlib import Path
from typing import Optional

import yaml

from dreamshell.config import (
    CONFIG_KEYS,
    _load_yaml_config,
    _resolve_home,
    get_config_path,
    reload_settings,
    save_yaml_config,
)
from dreamshell.lib.auth import issue_token


# --- Helpers ---


def _get_env_file() -> Path:
    """Get the .env file path (in CWD)."""
    return Path.cwd() / ".env"


def _load_env_file(env_file: Path) -> dict[str, str]:
    """Load key=value pairs from a .env file."""
    env = {}
    if env_file.exists():
        for line in env_file.read_text().splitlines():
            line = line.strip()
            if not line or line.startswith("#"):
                continue
            if "=" in line:
                key, _, value = line.partition("=")
                env[key.strip()] = value.strip()
    return env


def _save_env_file(env_file: Path, env: dict[str, str]) -> Path:
    """Save key=value pairs to a .env file, readable only by the owner."""
    lines = [f"{key}={value}" for key, value in sorted(env.items())]
    env_file.write_text("\n".join(lines) + "\n")
    env_file.chmod(0o600)
    return env_file


def generate_secret() -> str:
    """32 random bytes, base64 encoded (same shape as `openssl rand -base64 32`)."""
    return base64.b64encode(secrets.token_bytes(32)).decode("ascii")


def _coerce(value: str):
    """Parse a CLI config value the way YAML would (ints, floats, bools)."""
    parsed = yaml.safe_load(value)
    return parsed if isinstance(parsed, (int, float, bool)) else value


# --- Commands ---


def cmd_init(args: argparse.Namespace) -> None:
    home = _resolve_home()
    settings = reload_settings()
    for directory in (settings.sessions_path, settings.logs_path):
        directory.mkdir(parents=True, exist_ok=True)
        print(f"  {directory}")
    print(f"Local storage directories created at {home}")


def cmd_create_env(args: argparse.Namespace) -> None:
    env_file = _get_env_file()
    env = _load_env_file(env_file)
    if env.get("JWT_SECRET") and not args.force:
        print(f"{env_file} already has a JWT_SECRET (use --force to replace it)", file=sys.stderr)
        sys.exit(1)
    env["JWT_SECRET"] = generate_secret()
    _save_env_file(env_file, env)
    print(f"{env_file} created with random JWT secret")


def cmd_token(args: argparse.Namespace) -> None:
    settings = reload_settings()
    if not settings.jwt_secret:
        print("JWT_SECRET is not set. Run: dreamshell create-env", file=sys.stderr)
        sys.exit(1)
    print(issue_token(settings.jwt_secret, args.sub, ttl_seconds=args.ttl))


def cmd_serve(args: argparse.Namespace) -> None:
    from dreamshell.server import main as server_main

    server_main(host=args.host, port=args.port)


def cmd_config(args: argparse.Namespace) -> None:
    home = _resolve_home()
    if args.action == "show" or args.action is None:
        _config_show(home)
    elif args.action == "set":
        _config_set(home, args.key, args.value)
    elif args.action == "get":
        _config_get(home, args.key)


def _config_show(home: Path) -> None:
    settings = reload_settings()
    print(f"Config file: {get_config_path(home)}")
    print(f"  home:            {settings.home}")
    print(f"  host:            {settings.host}")
    print(f"  port:            {settings.port}")
    print(f"  image:           {settings.image}")
    print(f"  sessions_dir:    {settings.sessions_path}")
    print(f"  logs_dir:        {settings.logs_path}")
    print(f"  runtime_timeout: {settings.runtime_timeout:g}s")
    print(f"  log_level:       {settings.log_level}")
    print(f"  jwt_secret:      {'configured' if settings.jwt_secret else 'not set'}")


def _config_set(home: Path, key: str, value: str) -> None:
    if key not in CONFIG_KEYS:
        print(f"Unknown config key: {key}", file=sys.stderr)
        print(f"Known keys: {', '.join(sorted(CONFIG_KEYS))}", file=sys.stderr)
        sys.exit(1)
    config = _load_yaml_config(home)
    config[key] = _coerce(value)
    config_file = save_yaml_config(home, config)
    print(f"Set {key} = {config[key]} in {config_file}")


def _config_get(home: Path, key: str) -> None:
    config = _load_yaml_config(home)
    if key not in config:
        print(f"{key} is not set in {get_config_path(home)}", file=sys.stderr)
        sys.exit(1)
    print(config[key])


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="dreamshell",
        description="dreamshell: container sessions with persistent stdio transcripts",
    )
    subparsers = parser.add_subparsers(dest="command")

    subparsers.add_parser("init", help="Create local storage directories")

    env_parser = subparsers.add_parser("create-env", help="Write .env with a random JWT secret")
    env_parser.add_argument("--force", action="store_true", help="Replace an existing JWT_SECRET")

    token_parser = subparsers.add_parser("token", help="Print a signed bearer token")
    token_parser.add_argument("--sub", required=True, help="Token subject")
    token_parser.add_argument(
        "--ttl", type=int, default=None,
        help="Seconds until expiry (default: no expiry)",
    )

    serve_parser = subparsers.add_parser("serve", help="Run the API server in the foreground")
    serve_parser.add_argument("--host", default=None, help="Bind address")
    serve_parser.add_argument("--port", type=int, default=None, help="Port")

    config_parser = subparsers.add_parser("config", help="Configuration management")
    config_sub = config_parser.add_subparsers(dest="action")
    config_sub.add_parser("show", help="Show current config")
    config_set_parser = config_sub.add_parser("set", help="Set a config value")
    config_set_parser.add_argument("key", help="Config key")
    config_set_parser.add_argument("value", help="Config value")
    config_get_parser = config_sub.add_parser("get", help="Get a config value")
    config_get_parser.add_argument("key", help="Config key")

    return parser


def main(argv: Optional[list[str]] = None) -> None:
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.command == "init":
        cmd_init(args)
    elif args.command == "create-env":
        cmd_create_env(args)
    elif args.command == "token":
        cmd_token(args)
    elif args.command == "serve":
        cmd_serve(args)
    elif args.command == "config":
        cmd_config(args)
    else:
        parser.print_help()


if __name__ == "__main__":
    main()
