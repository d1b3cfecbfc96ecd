from __future__ import annotations

import argparse
import logging
import signal
import sys
import threading
from typing import Any, Dict, Optional

import requests

from .config import SALT_LOG_LEVELS, InstallConfig, build_config, load_config_file
from .errors import CastError
from .lib.cache import Cache
from .lib.distro import DistroKind
from .lib.github import GitHubClient
from .lib.registry import default_registry
from .logging_utils import configure_logging
from .pipeline import InstallCtx, run_pipeline
from .state_store import InstallationStateStore
from .steps import (
    ApplyStatesStep,
    DownloadStep,
    ExtractStep,
    PrepareSaltStep,
    RecordStateStep,
    ResolveDistroStep,
    VerifyStep,
)

logger = logging.getLogger(__name__)


def build_steps():
    return [
        ResolveDistroStep(),
        DownloadStep(),
        VerifyStep(),
        ExtractStep(),
        PrepareSaltStep(),
        ApplyStatesStep(),
        RecordStateStep(),
    ]


def _install_signal_handlers(cancel: threading.Event) -> Dict[int, Any]:
    if threading.current_thread() is not threading.main_thread():
        return {}

    def handler(signum, frame):
        logger.warning("Received signal %s, cancelling", signal.Signals(signum).name)
        cancel.set()

    previous = {}
    for sig in (signal.SIGINT, signal.SIGTERM):
        previous[sig] = signal.signal(sig, handler)
    return previous


def _restore_signal_handlers(previous: Dict[int, Any]) -> None:
    for sig, h in previous.items():
        signal.signal(sig, h)


def run(
    cfg: InstallConfig,
    *,
    session: Optional[requests.Session] = None,
    cancel: Optional[threading.Event] = None,
) -> Dict[str, Any]:
    """Run the install pipeline for one distro and return the final run state."""

    cancel = cancel or threading.Event()
    previous = _install_signal_handlers(cancel)
    timer: Optional[threading.Timer] = None
    if cfg.timeout:
        timer = threading.Timer(cfg.timeout, cancel.set)
        timer.daemon = True
        timer.start()

    state: Dict[str, Any] = {}
    try:
        store = InstallationStateStore(cfg.state_path)
        store.load()

        client = None
        if cfg.kind is DistroKind.GITHUB:
            client = GitHubClient(token=cfg.github_token or "", session=session, cancel=cancel)

        ctx = InstallCtx(
            cfg=cfg,
            registry=default_registry(cfg.pgp_key_file),
            cancel=cancel,
            cache=Cache.create(cfg.effective_cache_path),
            store=store,
            client=client,
        )
        result = run_pipeline(ctx, steps=build_steps(), state=state)
    except CastError:
        distro = state.get("distro")
        if distro is not None and distro.failure_message:
            print()
            print(distro.failure_message)
        raise
    finally:
        if timer is not None:
            timer.cancel()
        _restore_signal_handlers(previous)

    distro = result.state["distro"]
    if distro.success_message:
        print()
        print(distro.success_message)
    return result.state


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="cast-installer", description="Install a SaltStack based distro")
    p.add_argument("distro", help="Distro alias, owner/repo, or local directory (optionally name@version)")
    p.add_argument("--config", default=None, help="YAML file with default option values")
    p.add_argument("--github-token", default=None, help="GitHub token (env GITHUB_TOKEN, CAST_GITHUB_TOKEN)")
    p.add_argument("--pre-release", action="store_true", help="Include pre-releases")
    p.add_argument("--mode", default=None, help="Install mode (env CAST_MODE); defaults to the saved mode")
    p.add_argument("--user", default=None, help="User to install as (env SUDO_USER, CAST_SUDO_USER)")
    p.add_argument("--cache-path", default=None, help="Cache directory (env CAST_CACHE_PATH)")
    p.add_argument(
        "--variable",
        dest="variables",
        action="append",
        default=[],
        metavar="KEY=VALUE",
        help="Template variable for pillar rendering (repeatable)",
    )
    p.add_argument("--dev", action="store_true", help="Keep the cache under the temp directory")
    p.add_argument("--no-root-check", action="store_true", help="Skip the root/user check")
    p.add_argument("--no-os-check", action="store_true", help="Skip the operating system support check")
    p.add_argument("--no-dependency-install", action="store_true", help="Never install salt automatically")
    p.add_argument("--saltstack-test", action="store_true", help="Run salt-call with test=True")
    p.add_argument("--saltstack-state", default=None, help="Apply this state instead of the mode state")
    p.add_argument("--saltstack-file-root", default=None, help="Use this file root instead of the extracted source")
    p.add_argument("--saltstack-log-level", default=None, choices=SALT_LOG_LEVELS, help="salt-call log level")
    p.add_argument("--timeout", type=float, default=None, help="Cancel the install after this many seconds")
    p.add_argument(
        "--pgp-key-file",
        default=None,
        help="Armored PGP public key for legacy (v1) signatures; required when a release ships .asc files "
        "(env CAST_PGP_KEY_FILE)",
    )
    p.add_argument("--state-path", default=None, help="Installation state file (yaml|json)")
    p.add_argument("--log", dest="log_path", default=None, help="Path to installer log")
    p.add_argument("--log-level", default=None, help="trace, debug, info, warn, error")
    return p


def main(argv: Optional[list[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    cli = vars(args)
    distro = cli.pop("distro")
    config_path = cli.pop("config")

    try:
        file_values = load_config_file(config_path) if config_path else None
        cfg = build_config(distro, cli, file_values=file_values)
    except CastError as e:
        print(f"cast-installer: {e}", file=sys.stderr)
        return 1

    configure_logging(log_path=cfg.log_path, level=cfg.log_level)

    try:
        run(cfg)
    except CastError as e:
        logger.error("Install failed: %s", e)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
