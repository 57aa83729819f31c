from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import List, Optional, Sequence

from ..build_config import BuildContext
from ..fallback import ArtifactValidator, FallbackExecutor, FallbackOption, FallbackOutcome
from ..lib.command import CmdResult
from ..lib.host import free_bytes
from ..lib.privileged import PrivilegedExecutor
from .stage_50_write_metadata import REQUIRED_FILES

logger = logging.getLogger(__name__)


def assembly_options(ctx: BuildContext, output: Path) -> List[FallbackOption]:
    """Alternative ways of mastering the ISO, most capable first."""

    out, src = str(output), str(ctx.iso_dir)
    compress = f"--compress={ctx.iso_compression}"
    return [
        FallbackOption(
            "grub-mkrescue",
            ["grub-mkrescue", "-o", out, src, compress, "--", "-volid", ctx.volume_id],
        ),
        FallbackOption(
            "grub-mkrescue (no volid)",
            ["grub-mkrescue", "-o", out, src, compress],
        ),
        FallbackOption(
            "xorriso (El Torito BIOS+EFI)",
            [
                "xorriso", "-as", "mkisofs",
                "-r", "-V", ctx.volume_id,
                "-cache-inodes", "-J", "-l",
                "-b", "boot/grub/i386-pc/eltorito.img",
                "-c", "boot.catalog",
                "-no-emul-boot", "-boot-load-size", "4", "-boot-info-table",
                "-eltorito-alt-boot",
                "-e", "boot/grub/efi.img", "-no-emul-boot",
                "-o", out, src,
            ],
        ),
        FallbackOption(
            "xorriso (minimal)",
            ["xorriso", "-as", "mkisofs", "-r", "-V", ctx.volume_id, "-o", out, src],
        ),
    ]


class AssembleArtifactStage:
    name = "assemble-artifact"

    def __init__(self, executor: PrivilegedExecutor, options: Optional[Sequence[FallbackOption]] = None) -> None:
        self.executor = executor
        self.options = options
        self.outcome: Optional[FallbackOutcome] = None

    def precondition(self, ctx: BuildContext) -> Optional[str]:
        missing = [rel for rel in REQUIRED_FILES if not (ctx.iso_dir / rel).is_file()]
        if missing:
            return f"required files missing: {', '.join(missing)}"
        available = free_bytes(ctx.output_dir)
        logger.info("Available disk space: %dGB", available // (1024 ** 3))
        if available < ctx.min_free_bytes:
            return f"insufficient disk space in {ctx.output_dir} ({available} bytes free, need {ctx.min_free_bytes})"
        if ctx.image_path.exists():
            return f"{ctx.image_path} already exists"
        return None

    def _invoke(self, argv: Sequence[str]) -> CmdResult:
        return self.executor.run(argv, check=False)

    def run(self, ctx: BuildContext) -> None:
        logger.info("Creating bootable ISO image...")
        if ctx.dry_run:
            validate = lambda _p: None  # noqa: E731 - nothing is written in a dry run
        else:
            validate = ArtifactValidator(ctx.min_artifact_bytes)
        fallback = FallbackExecutor(
            self.options or assembly_options(ctx, ctx.image_path),
            validate=validate,
            invoke=self._invoke,
            discard=self.executor.remove,
        )
        self.outcome = fallback.execute(ctx.image_path)
        logger.info("ISO created with %s", self.outcome.option.name)

        # Produced under sudo; hand it to the invoking user.
        self.executor.run(["chown", f"{os.getuid()}:{os.getgid()}", str(ctx.image_path)])
        if not ctx.dry_run:
            os.chmod(ctx.image_path, 0o644)

    def postcondition(self, ctx: BuildContext) -> Optional[str]:
        if self.outcome is None:
            return "no assembly strategy succeeded"
        if not ctx.image_path.is_file():
            return f"{ctx.image_path} missing"
        if ctx.image_path.stat().st_uid != os.getuid():
            return f"{ctx.image_path} is not owned by the invoking user"
        return None
