#!/usr/bin/env python3
"""OIV Packager - Entry Point"""

from __future__ import annotations

import argparse
import asyncio
import faulthandler
import json
import logging
import os
import sys
import traceback
from logging.handlers import RotatingFileHandler
from pathlib import Path

from disambiguator import ChoiceRequest
from errors import AmbiguityCancelled, PackagerError
from name_map import load_known_files
from oiv_archive import list_mod_files
from oiv_packager import PackagingOrchestrator
from packager_settings import load_settings

LOG_FORMAT = "%(asctime)s  %(levelname)-8s  %(message)s"


def setup_logging(verbose: bool = False) -> tuple[logging.Logger, Path]:
    log_dir = Path(os.environ.get("APPDATA", "~")).expanduser() / "OIVPackager"
    log_dir.mkdir(parents=True, exist_ok=True)
    log_file = log_dir / "oivpack.log"

    handler = RotatingFileHandler(
        log_file,
        maxBytes=1 * 1024 * 1024,  # 1 MB
        backupCount=2,
        encoding="utf-8",
    )
    handler.setFormatter(logging.Formatter(LOG_FORMAT))

    console = logging.StreamHandler()
    console.setFormatter(logging.Formatter("%(levelname)-8s  %(message)s"))
    console.setLevel(logging.DEBUG if verbose else logging.INFO)

    # modules log through their own __name__ loggers, so attach to the root
    root = logging.getLogger()
    root.setLevel(logging.DEBUG)
    root.addHandler(handler)
    root.addHandler(console)
    return logging.getLogger("oivpack"), log_dir


def install_crash_handler(logger: logging.Logger, log_dir: Path):
    # Python-level unhandled exceptions
    def handle_exception(exc_type, exc_value, exc_tb):
        if issubclass(exc_type, KeyboardInterrupt):
            sys.__excepthook__(exc_type, exc_value, exc_tb)
            return
        logger.critical(
            "Unhandled exception:\n%s",
            "".join(traceback.format_exception(exc_type, exc_value, exc_tb)),
        )

    sys.excepthook = handle_exception

    # faulthandler can't go through logging after a C-level crash
    crash_file = log_dir / "crash.log"
    faulthandler.enable(open(crash_file, "w"), all_threads=True)


class ConsoleChoiceProvider:
    """Asks on the terminal, one question at a time.

    An empty answer or ``q`` cancels the whole mod.
    """

    def __init__(self):
        self._lock = asyncio.Lock()

    async def request_choice(self, request: ChoiceRequest) -> str:
        async with self._lock:
            print(f"\n{request.prompt}")
            print(f"{request.key_label}: {request.key}")
            for idx, option in enumerate(request.options, 1):
                print(f"  {idx}) {option}")
            while True:
                answer = (await asyncio.to_thread(input, "Choice [1-%d, q]: " % len(request.options))).strip()
                if not answer or answer.lower() == "q":
                    raise AmbiguityCancelled(request.key, request.batch)
                if answer.isdigit() and 1 <= int(answer) <= len(request.options):
                    return request.options[int(answer) - 1]
                print("Not an option, try again.")


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="GTA V OIV Packager")
    parser.add_argument("--config", help="JSON settings file")
    parser.add_argument("--game-root")
    parser.add_argument("--name-map", help="namemap.json with known game files")
    parser.add_argument("-v", "--verbose", action="store_true")

    sub = parser.add_subparsers(dest="command", required=True)
    install = sub.add_parser("install", help="resolve where a mod's files go")
    install.add_argument("source", help="mod archive or folder")
    install.add_argument("--mod-name")
    sub.add_parser("merge", help="rebuild assembly.xml from deployed mods")
    deploy = sub.add_parser("deploy", help="merge and write the final .oiv package")
    deploy.add_argument("--icon", help="icon.png to embed in the package")
    return parser.parse_args(argv)


def build_orchestrator(args: argparse.Namespace) -> PackagingOrchestrator:
    settings = load_settings(args.config, game_root=args.game_root, name_map=args.name_map)
    known_files = load_known_files(settings.name_map)
    return PackagingOrchestrator(settings, known_files, choice_provider=ConsoleChoiceProvider())


def run_command(args: argparse.Namespace, logger: logging.Logger) -> int:
    orchestrator = build_orchestrator(args)

    if args.command == "install":
        source = Path(args.source)
        mod_name = args.mod_name or source.stem
        instructions = asyncio.run(orchestrator.install(list_mod_files(source), mod_name))
        mod_type = orchestrator.classify_mod_type(instructions)
        print(json.dumps([inst.as_dict() for inst in instructions], indent=2))
        print(f"Mod type: {mod_type} -> {orchestrator.settings.deployment_dir(mod_type, mod_name)}")
    elif args.command == "merge":
        orchestrator.prepare_directories()
        orchestrator.merge_installed(orchestrator.collect_deployed_files())
    elif args.command == "deploy":
        icon = Path(args.icon) if args.icon else None
        package = orchestrator.deploy(icon_path=icon)
        logger.info("Deployed %s", package)
    return 0


def run(argv: list[str] | None = None) -> int:
    args = parse_args(argv)
    logger, log_dir = setup_logging(args.verbose)
    install_crash_handler(logger, log_dir)
    logger.info("Starting OIV Packager (%s)", args.command)
    try:
        return run_command(args, logger)
    except AmbiguityCancelled as exc:
        logger.warning("%s", exc)
        return 2
    except (PackagerError, ValueError) as exc:
        logger.error("%s", exc)
        return 1


if __name__ == "__main__":
    sys.exit(run())
