"""Command line entry point: `modsync install | status | recompile`.

Exit codes:
  0   success
  1   one or more modules failed
  2   usage or precheck error
  130 aborted by the user
"""

from __future__ import annotations

import argparse
from pathlib import Path
import sys
from typing import Any

from modsync.application.orchestrator import InstallOrchestrator, run_failed
from modsync.application.status import build_status, print_status
from modsync.config.prompter import ConsolePrompter, DefaultsPrompter, Prompter, ScriptedPrompter
from modsync.domain.errors import PromptAborted
from modsync.infrastructure.console import Console, eprint
from modsync.infrastructure.settings import InstallerSettings, parse_custom_path, resolve_settings
from modsync.infrastructure.yaml_io import YamlDocumentError, load_yaml_mapping
from modsync.version import VERSION

EXIT_OK = 0
EXIT_MODULE_FAILED = 1
EXIT_USAGE = 2
EXIT_ABORTED = 130


def is_interactive() -> bool:
    return sys.stdin.isatty() and sys.stdout.isatty()


def _add_common(p: argparse.ArgumentParser) -> None:
    p.add_argument("--directory", type=Path, default=Path.cwd(), help="Project directory (default: current directory).")
    p.add_argument("--folder", default=None, help="Install folder name inside the project (env MODSYNC_FOLDER).")
    p.add_argument("--source-dir", type=Path, default=None, help="Builtin module directory (env MODSYNC_SOURCE_DIR).")
    p.add_argument("--cache-dir", type=Path, default=None, help="Remote module clone cache (env MODSYNC_CACHE_DIR).")
    p.add_argument("--registry", type=Path, default=None, help="Remote module registry YAML (env MODSYNC_REGISTRY).")
    p.add_argument(
        "--custom",
        action="append",
        default=[],
        metavar="ID=PATH",
        help="Local custom module directory; may be repeated.",
    )
    p.add_argument("--quiet", action="store_true", help="Only print warnings, errors and the final summary.")


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="modsync", description="Install and re-synchronize feature modules into a project.")
    p.add_argument("--version", action="version", version=f"modsync {VERSION}")
    sub = p.add_subparsers(dest="command", required=True)

    install = sub.add_parser("install", help="Install or update modules.")
    _add_common(install)
    install.add_argument("--modules", default="", help="Comma separated module ids to install.")
    install.add_argument("--yes", action="store_true", help="Accept every default without prompting.")
    install.add_argument("--answers", type=Path, default=None, help="YAML file with config answers.")
    install.add_argument(
        "--quick-update",
        action="store_true",
        help="Update every installed module, prompting only for new config keys.",
    )
    install.add_argument("--dry-run", action="store_true", help="Show what would happen without writing anything.")

    status = sub.add_parser("status", help="Show installed modules and files changed since install.")
    _add_common(status)

    recompile = sub.add_parser("recompile", help="Recompile agents of installed modules with customizations applied.")
    _add_common(recompile)
    recompile.add_argument("--dry-run", action="store_true", help="Show what would happen without writing anything.")
    return p


def settings_from_args(args: argparse.Namespace) -> InstallerSettings:
    modules = tuple(m.strip() for m in str(getattr(args, "modules", "") or "").split(",") if m.strip())
    return resolve_settings(
        project_dir=args.directory,
        folder_name=args.folder,
        builtin_dir=args.source_dir,
        cache_dir=args.cache_dir,
        registry_path=args.registry,
        custom_paths=tuple(parse_custom_path(raw) for raw in args.custom),
        selected_modules=modules,
        assume_yes=bool(getattr(args, "yes", False)),
        dry_run=bool(getattr(args, "dry_run", False)),
        quiet=bool(args.quiet),
        quick_update=bool(getattr(args, "quick_update", False)),
    )


def build_prompter(args: argparse.Namespace, settings: InstallerSettings) -> Prompter:
    answers_path = getattr(args, "answers", None)
    if answers_path is not None:
        responses: dict[str, Any] = load_yaml_mapping(answers_path)
        return ScriptedPrompter(responses=responses)
    if settings.assume_yes or not is_interactive():
        return DefaultsPrompter()
    return ConsolePrompter()


def _print_banner(settings: InstallerSettings, command: str, console: Console) -> None:
    console.rule()
    console.info("modsync module installer")
    console.info(f"Installer Version: {VERSION}")
    console.info(f"Command: {command.upper()} | {'DRY-RUN' if settings.dry_run else 'LIVE'}")
    console.rule()


def main(argv: list[str]) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        settings = settings_from_args(args)
    except ValueError as exc:
        eprint(f"❌ {exc}")
        return EXIT_USAGE
    console = Console(quiet=settings.quiet)

    if args.command == "status":
        try:
            print_status(build_status(settings), console)
        except ValueError as exc:
            eprint(f"❌ {exc}")
            return EXIT_USAGE
        return EXIT_OK

    try:
        prompter = build_prompter(args, settings)
    except (YamlDocumentError, OSError) as exc:
        eprint(f"❌ cannot read answers file: {exc}")
        return EXIT_USAGE

    if args.command == "recompile":
        mode = "recompile"
    elif settings.quick_update:
        mode = "quick-update"
    else:
        mode = "install"

    _print_banner(settings, mode, console)
    orchestrator = InstallOrchestrator(settings, prompter=prompter, console=console)
    try:
        ctx = orchestrator.run(mode)
    except (PromptAborted, KeyboardInterrupt):
        eprint("\n❌ Aborted; modules not yet processed were left untouched.")
        return EXIT_ABORTED
    except ValueError as exc:
        eprint(f"❌ {exc}")
        return EXIT_USAGE
    return EXIT_MODULE_FAILED if run_failed(ctx) else EXIT_OK


def console_main() -> None:
    raise SystemExit(main(sys.argv[1:]))


if __name__ == "__main__":
    console_main()
