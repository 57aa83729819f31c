from __future__ import annotations

import hashlib
import logging
from pathlib import Path
from typing import Optional

from ..build_config import BuildContext

logger = logging.getLogger(__name__)


def checksum_path(image: Path) -> Path:
    return image.with_name(image.name + ".sha256")


def sha256_file(path: Path, *, chunk_size: int = 1024 * 1024) -> str:
    h = hashlib.sha256()
    with path.open("rb") as fh:
        for chunk in iter(lambda: fh.read(chunk_size), b""):
            h.update(chunk)
    return h.hexdigest()


class ChecksumStage:
    name = "checksum"

    def precondition(self, ctx: BuildContext) -> Optional[str]:
        if not ctx.image_path.is_file():
            return f"{ctx.image_path} missing"
        return None

    def run(self, ctx: BuildContext) -> None:
        out = checksum_path(ctx.image_path)
        if ctx.dry_run:
            logger.info("Would write %s", out)
            return
        digest = sha256_file(ctx.image_path)
        out.write_text(f"{digest}  {ctx.image_path.name}\n", encoding="utf-8")
        logger.info("SHA256 %s  %s", digest, ctx.image_path.name)

    def postcondition(self, ctx: BuildContext) -> Optional[str]:
        if not checksum_path(ctx.image_path).is_file():
            return "checksum file was not written"
        return None
