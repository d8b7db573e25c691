from .loader import load_config
from .models import (
    AliyunParserConfig,
    BucketStoreConfig,
    DocRelayConfig,
    FileConfig,
    GitHubStoreConfig,
    HTTPConfig,
    ImageConfig,
    MinerUParserConfig,
    ParserConfig,
    PollingConfig,
    StorageConfig,
)

__all__ = [
    "AliyunParserConfig",
    "BucketStoreConfig",
    "DocRelayConfig",
    "FileConfig",
    "GitHubStoreConfig",
    "HTTPConfig",
    "ImageConfig",
    "MinerUParserConfig",
    "ParserConfig",
    "PollingConfig",
    "StorageConfig",
    "load_config",
]
