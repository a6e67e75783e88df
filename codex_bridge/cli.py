"""Command line entry point: serve, login, logout, status."""

import argparse
import asyncio
import logging
import sys
from typing import Optional, Sequence

from .auth.manager import AuthManager
from .auth.token_store import is_expired
from .config_loader import ProxyConfig, load_config
from .core.exceptions import ProxyError
from .logging import mask_token, setup_logging

logger = logging.getLogger("codex-bridge")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="codex-bridge",
        description="Messages API gateway in front of the codex responses backend",
    )
    parser.add_argument("--config", help="Path to a YAML config file (default: $CODEX_BRIDGE_CONFIG)")
    parser.add_argument("--debug", action="store_true", help="Enable debug logging")
    subparsers = parser.add_subparsers(dest="command")

    serve = subparsers.add_parser("serve", help="Run the HTTP bridge (default)")
    serve.add_argument("--host", help="Bind host (overrides config)")
    serve.add_argument("--port", type=int, help="Bind port (overrides config)")

    subparsers.add_parser("login", help="Run the browser OAuth flow and store the credential")
    subparsers.add_parser("logout", help="Clear the stored credential")
    subparsers.add_parser("status", help="Show the stored credential state")
    return parser


def _serve(config: ProxyConfig, host: Optional[str], port: Optional[int]) -> int:
    import uvicorn

    from .main import create_app

    if host:
        config.host = host
    if port:
        config.port = port
    app = create_app(config)
    uvicorn.run(app, host=config.host, port=config.port, log_level="debug" if config.debug else "info")
    return 0


def _login(config: ProxyConfig) -> int:
    manager = AuthManager(config)
    token = asyncio.run(manager.login())
    print(f"Stored credential {mask_token(token.access_token)} at {manager.store.file_path}")
    if token.account_id:
        print(f"Account: {token.account_id}")
    return 0


def _logout(config: ProxyConfig) -> int:
    AuthManager(config).logout()
    print(f"Cleared credential at {config.auth_path}")
    return 0


def _status(config: ProxyConfig) -> int:
    token = AuthManager(config).store.read()
    if token is None or not token.access_token:
        print(f"No credential stored at {config.auth_path}")
        return 1
    state = "expired" if is_expired(token) else "valid"
    print(f"Credential {mask_token(token.access_token)} is {state}")
    print(f"Refresh token: {'present' if token.refresh_token else 'missing'}")
    return 0


def main(argv: Optional[Sequence[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        config = load_config(args.config)
    except (ProxyError, RuntimeError) as exc:
        print(f"Configuration error: {exc}", file=sys.stderr)
        return 2
    if args.debug:
        config.debug = True
    setup_logging(config.debug)

    command = args.command or "serve"
    try:
        if command == "serve":
            return _serve(config, getattr(args, "host", None), getattr(args, "port", None))
        if command == "login":
            return _login(config)
        if command == "logout":
            return _logout(config)
        return _status(config)
    except ProxyError as exc:
        logger.error("%s failed: %s", command, exc.message)
        return 1


if __name__ == "__main__":
    sys.exit(main())
