#!/usr/bin/env python3
"""
armorctl - AppArmor Profile CLI for Armor Daemon

Provides command-line interface for the AppArmor enforcer:
- Compile a container group policy to profile text (dry run)
- Apply a container group policy to the local node
- Remove stale profiles left by a previous run
- List the profiles this daemon owns

Usage:
    armorctl compile policy.yaml
    armorctl compile policy.yaml --profile web-profile -o web-profile
    armorctl apply policy.yaml
    armorctl apply policy.yaml --status
    armorctl sweep
    armorctl list --json

Environment Variables:
    ARMOR_PROFILE_DIR     - AppArmor profile directory
    ARMOR_PARSER          - apparmor_parser binary
    ARMOR_LOADER_TIMEOUT  - apparmor_parser timeout in seconds
    ARMOR_K8S_LOCAL       - skip mounting securityfs
"""

import argparse
import json
import sys
from typing import List, Optional

from armor.config import ConfigError, EnforcerConfig, load_config
from armor.enforcement import (
    AppArmorEnforcer,
    EnforcerError,
    EnforcerInitError,
    compile_profile,
    initialize,
)
from armor.logging_config import configure_from_environment, setup_logging
from armor.policy import PolicyFileError, load_container_group


# ANSI color codes
class Colors:
    RESET = '\033[0m'
    BOLD = '\033[1m'
    RED = '\033[91m'
    GREEN = '\033[92m'
    YELLOW = '\033[93m'
    CYAN = '\033[96m'
    GRAY = '\033[90m'

    @classmethod
    def disable(cls):
        """Disable colors for non-TTY output."""
        cls.RESET = ''
        cls.BOLD = ''
        cls.RED = ''
        cls.GREEN = ''
        cls.YELLOW = ''
        cls.CYAN = ''
        cls.GRAY = ''


def print_error(msg: str) -> None:
    """Print error message."""
    print(f"{Colors.RED}Error:{Colors.RESET} {msg}", file=sys.stderr)


def print_success(msg: str) -> None:
    """Print success message."""
    print(f"{Colors.GREEN}✓{Colors.RESET} {msg}")


def print_warning(msg: str) -> None:
    """Print warning message."""
    print(f"{Colors.YELLOW}Warning:{Colors.RESET} {msg}")


class ArmorCLI:
    """CLI handler for armorctl commands."""

    def __init__(self, config_path: Optional[str] = None, profile_dir: Optional[str] = None):
        self.config_path = config_path
        self.profile_dir = profile_dir

    def _load_config(self) -> EnforcerConfig:
        config = load_config(self.config_path)
        if self.profile_dir:
            config.profile_dir = self.profile_dir
        return config

    def cmd_compile(self, args: argparse.Namespace) -> int:
        """Print the profiles a policy compiles to, without touching the node."""
        try:
            group = load_container_group(args.policy)
        except PolicyFileError as e:
            print_error(str(e))
            return 1

        profiles = group.managed_profiles()
        if args.profile:
            if args.profile not in profiles:
                print_error(f"{group.identity} does not use profile {args.profile}")
                return 1
            profiles = [args.profile]

        if not profiles:
            print_warning(f"{group.identity} uses no managed AppArmor profile")
            return 0

        texts: List[str] = []
        for profile_name in profiles:
            _, text, ok = compile_profile(
                profile_name,
                group.rules_for_profile(profile_name),
            )
            if not ok:
                print_error(text)
                return 1
            texts.append(text)

        output = "\n".join(texts)
        if args.output:
            try:
                with open(args.output, 'w') as f:
                    f.write(output)
            except OSError as e:
                print_error(f"Failed to write {args.output}: {e}")
                return 1
            print_success(f"Wrote {len(texts)} profile(s) to {args.output}")
        else:
            sys.stdout.write(output)
        return 0

    def cmd_apply(self, args: argparse.Namespace) -> int:
        """Register and update every profile of a container group."""
        try:
            group = load_container_group(args.policy)
            enforcer = initialize(self._load_config())
        except (PolicyFileError, ConfigError, EnforcerInitError) as e:
            print_error(str(e))
            return 1

        failed = False
        for profile_name in group.managed_profiles():
            for _ in group.containers_for_profile(profile_name):
                ok, message = enforcer.register_profile(profile_name)
                if not ok:
                    print_error(message)
                    failed = True

        for profile_name, (ok, message) in enforcer.update_security_policies(group).items():
            if ok:
                print_success(message)
            else:
                print_error(message)
                failed = True

        if args.status:
            print(json.dumps(enforcer.get_status(), indent=2))

        return 1 if failed else 0

    def cmd_sweep(self, args: argparse.Namespace) -> int:
        """Remove every owned profile from the profile directory."""
        try:
            config = self._load_config()
            stale = [p.name for p in AppArmorEnforcer(config).owned_profiles()]
            initialize(config)
        except (ConfigError, EnforcerError) as e:
            print_error(str(e))
            return 1

        for name in stale:
            print(f"  {Colors.GRAY}removed{Colors.RESET} {name}")
        print_success(f"Removed {len(stale)} stale profile(s)")
        return 0

    def cmd_list(self, args: argparse.Namespace) -> int:
        """List owned profiles in the profile directory."""
        try:
            enforcer = AppArmorEnforcer(self._load_config())
            owned = enforcer.owned_profiles()
        except (ConfigError, EnforcerError) as e:
            print_error(str(e))
            return 1

        if args.json:
            print(json.dumps(
                [{'name': p.name, 'path': str(p)} for p in owned],
                indent=2,
            ))
            return 0

        if not owned:
            print(f"{Colors.GRAY}No managed profiles in {enforcer.profile_dir}{Colors.RESET}")
            return 0

        print(f"{Colors.BOLD}{'PROFILE':<40} PATH{Colors.RESET}")
        for path in owned:
            print(f"{path.name:<40} {path}")
        return 0


def create_parser() -> argparse.ArgumentParser:
    """Create argument parser."""
    parser = argparse.ArgumentParser(
        prog='armorctl',
        description='AppArmor profile management for Armor Daemon',
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )

    parser.add_argument(
        '-c', '--config',
        help='Path to configuration file'
    )
    parser.add_argument(
        '--profile-dir',
        help='AppArmor profile directory (overrides configuration)'
    )
    parser.add_argument(
        '-v', '--verbose', action='store_true',
        help='Enable verbose logging'
    )
    parser.add_argument(
        '--json-logs', action='store_true',
        help='Emit logs as JSON'
    )
    parser.add_argument(
        '--no-color', action='store_true',
        help='Disable colored output'
    )

    subparsers = parser.add_subparsers(dest='command', help='Commands')

    # compile command
    compile_parser = subparsers.add_parser('compile', help='Compile a policy to profile text')
    compile_parser.add_argument('policy', help='Container group policy file (YAML)')
    compile_parser.add_argument(
        '-p', '--profile',
        help='Only compile this profile'
    )
    compile_parser.add_argument(
        '-o', '--output',
        help='Write the profile text to a file instead of stdout'
    )

    # apply command
    apply_parser = subparsers.add_parser('apply', help='Apply a policy to this node')
    apply_parser.add_argument('policy', help='Container group policy file (YAML)')
    apply_parser.add_argument(
        '--status', action='store_true',
        help='Print refcounts and reported failures as JSON afterwards'
    )

    # sweep command
    subparsers.add_parser('sweep', help='Remove stale managed profiles')

    # list command
    list_parser = subparsers.add_parser('list', aliases=['ls'], help='List managed profiles')
    list_parser.add_argument(
        '--json', action='store_true',
        help='Output as JSON'
    )

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point."""
    parser = create_parser()
    args = parser.parse_args(argv)

    # Handle colors
    if args.no_color or not sys.stdout.isatty():
        Colors.disable()

    if args.verbose or args.json_logs:
        setup_logging(
            verbose=args.verbose,
            json_format=args.json_logs,
            use_colors=not args.no_color,
        )
    else:
        configure_from_environment()

    cli = ArmorCLI(
        config_path=args.config,
        profile_dir=args.profile_dir,
    )

    # Dispatch command
    if not args.command:
        parser.print_help()
        return 0

    command_map = {
        'compile': cli.cmd_compile,
        'apply': cli.cmd_apply,
        'sweep': cli.cmd_sweep,
        'list': cli.cmd_list,
        'ls': cli.cmd_list,
    }

    handler = command_map.get(args.command)
    if handler:
        return handler(args)
    else:
        print_error(f"Unknown command: {args.command}")
        return 1


if __name__ == '__main__':
    sys.exit(main())
