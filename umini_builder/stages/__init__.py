from .stage_10_bootstrap import BootstrapStage
from .stage_20_configure import ConfigureStage
from .stage_30_extract_boot_assets import ExtractBootAssetsStage
from .stage_40_compress_root import CompressRootStage
from .stage_50_write_metadata import WriteMetadataStage
from .stage_60_assemble_artifact import AssembleArtifactStage
from .stage_70_checksum import ChecksumStage

__all__ = [
    "BootstrapStage",
    "ConfigureStage",
    "ExtractBootAssetsStage",
    "CompressRootStage",
    "WriteMetadataStage",
    "AssembleArtifactStage",
    "ChecksumStage",
]
