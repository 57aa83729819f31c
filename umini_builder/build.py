from __future__ import annotations

import argparse
import logging
import os
import time
from typing import List, Mapping, Optional

from .build_config import BuildContext, build_context, load_build_config
from .errors import BuildError, StageError, exit_status_for
from .lib.command import CommandError
from .lib.host import check_host_dependencies, detect_timezone, ensure_sudo, ensure_unprivileged
from .lib.manifests import PackageSets, load_package_sets
from .lib.privileged import PrivilegedExecutor
from .lifecycle import SignalCoordinator
from .logging_utils import configure_logging
from .pipeline import PipelineResult, Stage, StageRunner
from .resources import ResourceGuard
from .stages import (
    AssembleArtifactStage,
    BootstrapStage,
    ChecksumStage,
    CompressRootStage,
    ConfigureStage,
    ExtractBootAssetsStage,
    WriteMetadataStage,
)

logger = logging.getLogger(__name__)


DEFAULT_BUILD_LOG = "logs/umini-build.log"
PREPARE_STEP = "prepare"


def build_stages(
    *,
    executor: PrivilegedExecutor,
    guard: ResourceGuard,
    packages: PackageSets,
) -> List[Stage]:
    return [
        BootstrapStage(executor, packages),
        ConfigureStage(executor, guard, packages),
        ExtractBootAssetsStage(executor),
        CompressRootStage(executor, guard),
        WriteMetadataStage(executor, packages),
        AssembleArtifactStage(executor),
        ChecksumStage(),
    ]


def prepare(ctx: BuildContext, executor: PrivilegedExecutor, packages: PackageSets) -> None:
    """Host checks and working directories; failures are reported like a stage's."""
    try:
        ensure_sudo(executor)
        check_host_dependencies(executor, required=packages.host_required, optional=packages.host_optional)
        logger.info("Creating working directories...")
        executor.make_dirs(ctx.chroot_dir, ctx.iso_dir)
        ctx.output_dir.mkdir(parents=True, exist_ok=True)
    except CommandError as e:
        raise StageError(PREPARE_STEP, str(e).splitlines()[0], diagnostics=e.result.tail()) from e
    except OSError as e:
        raise StageError(PREPARE_STEP, str(e)) from e


def _human_size(n: int) -> str:
    size = float(n)
    for unit in ("B", "K", "M", "G"):
        if size < 1024:
            return f"{size:.0f}{unit}"
        size /= 1024
    return f"{size:.1f}T"


def log_summary(ctx: BuildContext, result: PipelineResult, elapsed: float) -> None:
    image = ctx.image_path
    size = image.stat().st_size if image.exists() else 0
    manifest = ctx.casper_dir / "filesystem.manifest"
    packages = len(manifest.read_text(encoding="utf-8").splitlines()) if manifest.is_file() else 0
    secs = int(elapsed)
    logger.info("===============================")
    logger.info("BUILD COMPLETED SUCCESSFULLY")
    logger.info("Filename:     %s", ctx.image_name)
    logger.info("Location:     %s", image.resolve())
    logger.info("Size:         %s", _human_size(size))
    logger.info("Build time:   %ss (%dm %ds)", secs, secs // 60, secs % 60)
    logger.info("Compression:  SquashFS (%s) + ISO (%s)", ctx.squashfs_comp, ctx.iso_compression)
    logger.info("Architecture: %s", ctx.arch)
    logger.info("Release:      %s", ctx.release)
    logger.info("Timezone:     %s", ctx.timezone)
    logger.info("Packages:     %d installed", packages)
    logger.info("Stages:       %s", ", ".join(result.completed))
    logger.info("Test with:    qemu-system-x86_64 -m 2048 -cdrom %s -enable-kvm", ctx.image_name)
    logger.info("===============================")


def run_build(
    *,
    config_path: Optional[str],
    environ: Mapping[str, str],
    dry_run: bool,
) -> PipelineResult:
    started = time.monotonic()
    if not dry_run:
        ensure_unprivileged()

    cfg = load_build_config(config_path)
    timezone = detect_timezone()
    logger.info("Detected timezone: %s", timezone)
    ctx = build_context(cfg, environ, timezone=timezone, dry_run=dry_run)
    packages = load_package_sets()

    executor = PrivilegedExecutor(dry_run=dry_run)
    guard = ResourceGuard(executor, ctx.chroot_dir, umount_timeout=ctx.umount_timeout)
    stages = build_stages(executor=executor, guard=guard, packages=packages)
    coordinator = SignalCoordinator(ctx, guard, executor)

    def body() -> PipelineResult:
        prepare(ctx, executor, packages)
        return StageRunner(stages, ctx, check_conditions=not dry_run).run()

    logger.info("=== Building %s (%s/%s) ===", ctx.image_name, ctx.release, ctx.arch)
    result = coordinator.run(body)
    log_summary(ctx, result, time.monotonic() - started)
    return result


def main(argv: Optional[list[str]] = None) -> int:
    p = argparse.ArgumentParser(
        prog="umini-build",
        description="Build the uMini live ISO. Settings come from environment variables "
        "(RELEASE, ARCH, MIRROR, WORKDIR, OUTPUT_DIR, BUILD_THREADS, SQUASHFS_COMP, "
        "SQUASHFS_BLOCK_SIZE, ISO_COMPRESSION, PRESERVE_WORKDIR).",
    )
    p.add_argument("--config", default=None, help="Optional YAML file with build defaults")
    p.add_argument("--log", default=DEFAULT_BUILD_LOG)
    p.add_argument("--dry-run", action="store_true", help="Log commands without running them")
    p.add_argument("--verbose", action="store_true", help="Also log command output")

    args = p.parse_args(argv)
    configure_logging(log_path=args.log, level=logging.DEBUG if args.verbose else logging.INFO)

    try:
        run_build(config_path=args.config, environ=os.environ, dry_run=bool(args.dry_run))
    except BuildError as e:
        logger.error("Build failed: %s", e)
        diagnostics = getattr(e, "diagnostics", "")
        if diagnostics:
            logger.error("Last lines of output:\n%s", diagnostics)
        if isinstance(e, StageError):
            logger.error("Failing stage: %s", e.stage)
        return exit_status_for(e)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
