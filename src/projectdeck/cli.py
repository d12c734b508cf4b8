#!/usr/bin/env python3
"""projectdeck CLI - branch status of local projects."""
from __future__ import annotations

import argparse
import sys

# Fail fast on unsupported interpreter version
if sys.version_info < (3, 10):
    print(f"projectdeck requires Python 3.10+; found {sys.version.split()[0]}", file=sys.stderr)
    sys.exit(1)


def _resolve_config(args: argparse.Namespace):
    """Load config and apply command-line overrides, exiting on error."""
    from pathlib import Path
    from .config_loader import load_config, ConfigError
    from .observability import configure_logging

    project_path = Path(args.project_path) if getattr(args, "project_path", None) else None
    try:
        config = load_config(project_path)
    except ConfigError as e:
        print(f"❌ Config error: {e}", file=sys.stderr)
        sys.exit(1)

    if getattr(args, "roots", None):
        config = config.model_copy(
            update={"scan": config.scan.model_copy(update={"roots": list(args.roots)})}
        )
    if getattr(args, "reference", None):
        config = config.model_copy(
            update={"reconcile": config.reconcile.model_copy(update={"reference": args.reference})}
        )

    configure_logging(config.logging)
    return config


async def _load_projects(config, token):
    from projectdeck_git import GitInspectionService
    from .controller import ProjectListController
    from .registry import ProjectRegistry

    async with GitInspectionService(config, token=token) as service:
        registry = ProjectRegistry(service)
        controller = ProjectListController(service, registry)
        await controller.refresh()
        return registry.snapshots()


async def _watch_projects(config, token, interval: float) -> None:
    import asyncio
    from projectdeck_git import GitInspectionService
    from .controller import ProjectListController
    from .formatting import format_snapshot
    from .registry import ProjectRegistry

    async with GitInspectionService(config, token=token) as service:
        registry = ProjectRegistry(service)
        controller = ProjectListController(service, registry)
        await controller.refresh()

        for snapshot in registry.snapshots():
            print(format_snapshot(snapshot))
            print()

        async def _watch(model):
            while True:
                if await model.poll():
                    print(format_snapshot(model.snapshot()))
                    print()
                await asyncio.sleep(interval)

        print(f"Watching {len(registry)} project(s) every {interval:g}s (Ctrl-C to stop)")
        await asyncio.gather(*(_watch(model) for model in registry))


def main(argv: list[str] | None = None) -> None:
    from . import __version__

    ap = argparse.ArgumentParser(
        prog="projectdeck",
        description="Branch status of local projects against their upstreams",
    )
    ap.add_argument("--version", action="version", version=f"%(prog)s {__version__}")

    sub = ap.add_subparsers(dest="cmd")

    p_list = sub.add_parser("list", help="List projects with branch relations")
    p_list.add_argument("--root", dest="roots", action="append", help="Scan root (repeatable; overrides config)")
    p_list.add_argument("--reference", choices=["upstream", "github"], help="Reference commit policy")
    p_list.add_argument("--project-path", help="Project directory for config discovery")
    p_list.add_argument("--json", dest="as_json", action="store_true", help="Output as JSON")

    p_watch = sub.add_parser("watch", help="Re-check branches periodically and print changes")
    p_watch.add_argument("--root", dest="roots", action="append", help="Scan root (repeatable; overrides config)")
    p_watch.add_argument("--reference", choices=["upstream", "github"], help="Reference commit policy")
    p_watch.add_argument("--project-path", help="Project directory for config discovery")
    p_watch.add_argument("--interval", type=float, help="Seconds between polls (default: reconcile.poll_interval)")

    # Config commands
    p_config = sub.add_parser("config", help="Configuration management")
    config_sub = p_config.add_subparsers(dest="config_cmd")

    p_config_init = config_sub.add_parser("init", help="Initialize config file from template")
    p_config_init.add_argument("--project", action="store_true", help="Create project config (.projectdeck/config.toml)")
    p_config_init.add_argument("--force", action="store_true", help="Overwrite existing config")

    p_config_show = config_sub.add_parser("show", help="Show resolved configuration")
    p_config_show.add_argument("--project-path", help="Project directory for config discovery")
    p_config_show.add_argument("--json", dest="as_json", action="store_true", help="Output as JSON")
    p_config_show.add_argument("--sources", action="store_true", help="Show config source files")

    # Auth commands
    p_auth = sub.add_parser("auth", help="GitHub credentials")
    auth_sub = p_auth.add_subparsers(dest="auth_cmd")

    p_auth_set = auth_sub.add_parser("set-token", help="Store a GitHub token in ~/.projectdeck/credentials.toml")
    p_auth_set.add_argument("token", help="GitHub personal access token")

    auth_sub.add_parser("status", help="Show whether a GitHub token is available")

    args = ap.parse_args(argv)

    if not args.cmd:
        ap.print_help()
        sys.exit(0)

    if args.cmd == "list":
        import asyncio
        import json as json_module
        from .controller import RefreshError
        from .credentials import get_github_token
        from .formatting import format_snapshot

        config = _resolve_config(args)
        try:
            snapshots = asyncio.run(_load_projects(config, get_github_token()))
        except RefreshError as e:
            print(f"❌ {e}", file=sys.stderr)
            sys.exit(1)

        if args.as_json:
            print(json_module.dumps([s.to_dict() for s in snapshots], indent=2))
            sys.exit(0)

        if not snapshots:
            print("No projects found. Add scan roots with --root or in config ([scan] roots).")
            sys.exit(0)

        for snapshot in snapshots:
            print(format_snapshot(snapshot))
            print()
        sys.exit(0)

    if args.cmd == "watch":
        import asyncio
        from .controller import RefreshError
        from .credentials import get_github_token

        config = _resolve_config(args)
        interval = args.interval or config.reconcile.poll_interval
        try:
            asyncio.run(_watch_projects(config, get_github_token(), interval))
        except RefreshError as e:
            print(f"❌ {e}", file=sys.stderr)
            sys.exit(1)
        except KeyboardInterrupt:
            pass
        sys.exit(0)

    if args.cmd == "config":
        from pathlib import Path
        import json as json_module
        import shutil

        if not args.config_cmd:
            print("Usage: projectdeck config {init|show}")
            sys.exit(0)

        if args.config_cmd == "init":
            from .config_loader import ensure_config_dir, CONFIG_FILENAME

            template_path = Path(__file__).parent / "templates" / "config.example.toml"
            if not template_path.exists():
                print(f"❌ Template not found: {template_path}", file=sys.stderr)
                sys.exit(1)

            # Default to user config
            if args.project:
                config_dir = ensure_config_dir(user=False, project_path=Path.cwd())
                location = "project"
            else:
                config_dir = ensure_config_dir(user=True)
                location = "user"
            target_path = config_dir / CONFIG_FILENAME

            if target_path.exists() and not args.force:
                print(f"❌ Config already exists: {target_path}", file=sys.stderr)
                print("Use --force to overwrite.", file=sys.stderr)
                sys.exit(1)

            shutil.copy(template_path, target_path)
            print(f"✅ Created {location} config: {target_path}")
            sys.exit(0)

        if args.config_cmd == "show":
            import tomlkit
            from .config_loader import load_config, get_config_paths, ConfigError

            project_path = Path(args.project_path) if args.project_path else None

            if args.sources:
                paths = get_config_paths(project_path)
                print("Config sources (in priority order):")
                print()
                for name, path in paths.items():
                    if path and path.exists():
                        print(f"  ✓ {name}: {path}")
                    elif path:
                        print(f"  ✗ {name}: {path} (not found)")
                    else:
                        print(f"  - {name}: (not applicable)")
                print()
                print("Environment variables override all file configs.")
                sys.exit(0)

            try:
                config = load_config(project_path)
            except ConfigError as e:
                print(f"❌ Config error: {e}", file=sys.stderr)
                sys.exit(1)

            if args.as_json:
                print(json_module.dumps(config.model_dump(), indent=2))
                sys.exit(0)

            doc = tomlkit.document()
            doc.add(tomlkit.comment(" projectdeck configuration (resolved)"))
            doc.add(tomlkit.nl())
            for section, values in config.model_dump().items():
                if isinstance(values, dict):
                    table = tomlkit.table()
                    for key, val in values.items():
                        table.add(key, val)
                    doc.add(section, table)
                else:
                    doc.add(section, values)
            print(tomlkit.dumps(doc))
            sys.exit(0)

    if args.cmd == "auth":
        if not args.auth_cmd:
            print("Usage: projectdeck auth {set-token|status}")
            sys.exit(0)

        if args.auth_cmd == "set-token":
            from .credentials import load_credentials, save_credentials

            creds = load_credentials()
            creds.github.token = args.token
            path = save_credentials(creds)
            print(f"✅ Saved GitHub token to {path}")
            sys.exit(0)

        if args.auth_cmd == "status":
            import os
            from .credentials import load_credentials

            if os.getenv("GITHUB_TOKEN") or os.getenv("GH_TOKEN"):
                print("GitHub token: set (environment)")
            elif load_credentials().github.token:
                print("GitHub token: set (credentials file)")
            else:
                print("GitHub token: not set")
            sys.exit(0)


if __name__ == "__main__":
    main()
