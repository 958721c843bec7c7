#!/usr/bin/env python3
"""flk — per-system builds, apps and dev shells from a flake.toml."""

import argparse
import json
import logging
import os
import subprocess
import sys

from flk import derivation, nar, store_path
from flk.hash import nix32_encode
from flkpkgs.app import wrap
from flkpkgs.config import CONFIG_FILE, load_config
from flkpkgs.errors import ConfigError, FlakeError
from flkpkgs.flake import evaluate, show
from flkpkgs.realize import DaemonRuntime
from flkpkgs.systems import System, current_system, enumerate_systems


def _passthrough(argv: list[str]) -> list[str]:
    return argv[1:] if argv[:1] == ["--"] else argv


def _evaluate_one(args):
    config = load_config(args.file)
    try:
        system = System.parse(args.system) if args.system else current_system()
    except ValueError as e:
        raise ConfigError(str(e)) from e
    return evaluate(config, [system])[system]


def cmd_build(args):
    out = _evaluate_one(args)
    pkg = out.require("package")
    if args.dry_run:
        print(pkg.drv_path)
        for name, path in sorted(pkg.package.outputs.items()):
            print(f"  {name}: {path}")
        return 0
    print(DaemonRuntime(args.socket).realize(pkg))
    return 0


def cmd_run(args):
    out = _evaluate_one(args)
    if args.app:
        app = wrap(out.require("package"), args.app)
    else:
        app = out.require("app")
    DaemonRuntime(args.socket).realize(app.derivation)
    return subprocess.call(app.command(_passthrough(args.args)))


def cmd_shell(args):
    out = _evaluate_one(args)
    dev_shell = out.require("shell")
    if args.print_env:
        for entry in dev_shell.path_entries:
            print(entry)
        return 0
    DaemonRuntime(args.socket).realize_shell(dev_shell)
    command = _passthrough(args.command) or [os.environ.get("SHELL", "/bin/sh")]
    return subprocess.call(command, env=dev_shell.env())


def cmd_show(args):
    results = evaluate(load_config(args.file))
    json.dump(show(results), sys.stdout, indent=2, sort_keys=True)
    print()
    return 0 if all(r.ok for r in results.values()) else 1


def cmd_systems(args):
    for system in enumerate_systems(load_config(args.file)):
        print(system)
    return 0


def cmd_hash_path(args):
    h = nar.nar_hash(args.path)
    print(f"sha256:{nix32_encode(h) if args.base32 else h.hex()}")
    return 0


def cmd_store_path(args):
    print(store_path.path_to_store_path(args.path, args.name))
    return 0


def cmd_drv_show(args):
    with open(args.drv_path) as f:
        drv = derivation.parse(f.read())
    info = {
        "outputs": {k: {"path": v.path, "hashAlgo": v.hash_algo, "hash": v.hash_value}
                    for k, v in drv.outputs.items()},
        "inputDrvs": {k: list(v) for k, v in drv.input_drvs.items()},
        "inputSrcs": list(drv.input_srcs),
        "platform": drv.platform,
        "builder": drv.builder,
        "args": list(drv.args),
        "env": dict(drv.env),
    }
    json.dump(info, sys.stdout, indent=2)
    print()
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="flk", description=__doc__.strip())
    parser.add_argument("-f", "--file", default=CONFIG_FILE, help="flake configuration (default: %(default)s)")
    parser.add_argument("-v", "--verbose", action="count", default=0)
    parser.add_argument("--socket", help="Nix daemon socket path")
    sub = parser.add_subparsers(dest="subcommand")

    p = sub.add_parser("build", help="Build the package for one system")
    p.add_argument("--system", help="Target system (default: this host)")
    p.add_argument("--dry-run", action="store_true", help="Print the plan without building")
    p.set_defaults(func=cmd_build)

    p = sub.add_parser("run", help="Build, then run the app")
    p.add_argument("--system")
    p.add_argument("--app", help="Program to run (default: the main program)")
    p.add_argument("args", nargs=argparse.REMAINDER)
    p.set_defaults(func=cmd_run)

    p = sub.add_parser("shell", help="Enter the development shell")
    p.add_argument("--system")
    p.add_argument("--print-env", action="store_true", help="Print PATH entries instead of entering")
    p.add_argument("command", nargs=argparse.REMAINDER)
    p.set_defaults(func=cmd_shell)

    p = sub.add_parser("show", help="Evaluate every system and print the output tree")
    p.set_defaults(func=cmd_show)

    p = sub.add_parser("systems", help="List the systems the flake is evaluated for")
    p.set_defaults(func=cmd_systems)

    p = sub.add_parser("hash-path", help="Hash a path in NAR format")
    p.add_argument("path")
    p.add_argument("--base32", action="store_true")
    p.set_defaults(func=cmd_hash_path)

    p = sub.add_parser("store-path", help="Compute store path for a local path")
    p.add_argument("path")
    p.add_argument("--name", help="Override the store name")
    p.set_defaults(func=cmd_store_path)

    p = sub.add_parser("drv-show", help="Show parsed .drv file as JSON")
    p.add_argument("drv_path")
    p.set_defaults(func=cmd_drv_show)
    return parser


def main(argv=None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose > 1 else logging.INFO if args.verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )
    if not args.subcommand:
        parser.print_help()
        return 1
    try:
        return args.func(args)
    except FlakeError as e:
        print(f"error: {e.component}: {e.kind}: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
