"""CLI entrypoint for the population map builder."""

from __future__ import annotations

import argparse
import logging
from typing import Sequence

from .config import AppConfig, load_config
from .models import BuildManifest
from .pipeline import BuildReport, format_build_lines, run_build
from .util import detect_git_commit, ensure_directories, sha256_file, setup_logging, write_json
from .validate import Validator, format_report_lines

LOGGER = logging.getLogger("popmap.cli")


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="popmap",
        description="World population choropleth with airports and ports.",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    def add_common(p: argparse.ArgumentParser) -> None:
        p.add_argument("--config", default="config.yaml", help="Path to YAML config.")
        p.add_argument("--verbose", action="store_true", help="Enable debug logs.")

    build_p = subparsers.add_parser("build", help="Download data and write the HTML map.")
    add_common(build_p)

    validate_p = subparsers.add_parser("validate", help="Validate config without network access.")
    add_common(validate_p)

    return parser


def _load_and_setup(args: argparse.Namespace) -> AppConfig:
    cfg = load_config(args.config)
    log_path = cfg.paths.logs_dir / "build.log"
    setup_logging(log_path, verbose=args.verbose)
    ensure_directories(cfg.paths.build_directories)
    return cfg


def _run_validate(cfg: AppConfig) -> int:
    report = Validator(cfg).run()
    for line in format_report_lines(report):
        LOGGER.info(line)
    return 0 if report.ok else 1


def _run_build(cfg: AppConfig) -> int:
    LOGGER.info("Starting build pipeline.")

    validation = Validator(cfg).run()
    for line in format_report_lines(validation):
        LOGGER.info(line)
    if not validation.ok:
        LOGGER.error("Build aborted due to validation errors.")
        return 1

    report = run_build(cfg)
    for line in format_build_lines(report):
        LOGGER.info(line)

    if cfg.build.write_manifest:
        _write_manifest(cfg, report)

    if not report.ok:
        LOGGER.error("Build failed; no map written.")
        return 1
    LOGGER.info("Build finished.")
    return 0


def _write_manifest(cfg: AppConfig, report: BuildReport) -> None:
    manifest = BuildManifest.create(
        config_hash_sha256=sha256_file(cfg.source_path),
        git_commit=detect_git_commit(cfg.source_path.parent),
        steps=dict(report.steps),
        counts=dict(report.summary),
        artifacts={
            "output_html": str(report.output_path) if report.output_path else "",
            "cache_dir": str(cfg.paths.cache_dir),
        },
    )
    manifest_path = cfg.paths.manifests_dir / "build_manifest.json"
    write_json(manifest_path, manifest.to_dict())
    LOGGER.info("Build manifest written to %s", manifest_path)


def _dispatch(args: argparse.Namespace) -> int:
    cfg = _load_and_setup(args)
    command = str(args.command)
    if command == "build":
        return _run_build(cfg)
    if command == "validate":
        return _run_validate(cfg)
    raise ValueError(f"Unknown command: {command}")


def main(argv: Sequence[str] | None = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)
    return _dispatch(args)


if __name__ == "__main__":
    raise SystemExit(main())
