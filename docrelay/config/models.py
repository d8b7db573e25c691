from pydantic import BaseModel, Field
from typing import Literal


class PollingConfig(BaseModel):
    interval_ms: int = Field(default=3000, ge=0)
    max_attempts: int = Field(default=200, gt=0)


class AliyunParserConfig(BaseModel):
    base_url: str = "https://docmind-api.cn-hangzhou.aliyuncs.com"
    api_key_env: str = "ALIYUN_DOCMIND_API_KEY"
    llm_enhancement: bool = True
    enhancement_mode: str | None = "VLM"
    output_html_table: bool = False
    layout_step_size: int = Field(default=1000, gt=0)
    # Images in results are served from the vendor's temporary OSS domain
    image_url_pattern: str = r"https?://[^/]*\.aliyuncs\.com/.*"


class MinerUParserConfig(BaseModel):
    base_url: str = "https://mineru.net/api/v4"
    token_env: str = "MINERU_API_TOKEN"
    model_version: str = "vlm"
    enable_formula: bool = True
    enable_table: bool = True
    is_ocr: bool = False
    language: str = "ch"


class ParserConfig(BaseModel):
    provider: Literal["aliyun", "mineru"] = "aliyun"
    polling: PollingConfig = Field(default_factory=PollingConfig)
    aliyun: AliyunParserConfig = Field(default_factory=AliyunParserConfig)
    mineru: MinerUParserConfig = Field(default_factory=MinerUParserConfig)


class BucketStoreConfig(BaseModel):
    bucket: str = ""
    endpoint_url: str | None = None
    region: str = "us-east-1"
    access_key_id_env: str = "BUCKET_ACCESS_KEY_ID"
    secret_access_key_env: str = "BUCKET_SECRET_ACCESS_KEY"
    public_url: str | None = None
    key_prefix: str = ""


class GitHubStoreConfig(BaseModel):
    repo: str = ""
    branch: str = "main"
    path_prefix: str = "images/"
    cdn: str = "cdn.jsdelivr.net"
    token_env: str = "GITHUB_TOKEN"

    @property
    def cdn_base_url(self) -> str:
        return f"https://{self.cdn}/gh/{self.repo}@{self.branch}/{self.path_prefix}"


class StorageConfig(BaseModel):
    provider: Literal["bucket", "github"] = "bucket"
    namespace: str = "default"
    bucket: BucketStoreConfig = Field(default_factory=BucketStoreConfig)
    github: GitHubStoreConfig = Field(default_factory=GitHubStoreConfig)


class FileConfig(BaseModel):
    tmp_dir: str = ".docrelay/tmp"
    allowed_types: list[str] = Field(default_factory=lambda: ["pdf", "doc", "docx"])
    max_size_mb: int = Field(default=50, gt=0)

    def is_allowed_type(self, extension: str) -> bool:
        ext = extension.lower().lstrip(".")
        return ext in {t.lower().lstrip(".") for t in self.allowed_types}


class HTTPConfig(BaseModel):
    connect_timeout: float = Field(default=60.0, gt=0)
    read_timeout: float = Field(default=60.0, gt=0)
    write_timeout: float = Field(default=60.0, gt=0)


class ImageConfig(BaseModel):
    max_concurrency: int = Field(default=4, gt=0)


class DocRelayConfig(BaseModel):
    parser: ParserConfig = Field(default_factory=ParserConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)
    files: FileConfig = Field(default_factory=FileConfig)
    http: HTTPConfig = Field(default_factory=HTTPConfig)
    images: ImageConfig = Field(default_factory=ImageConfig)
    log_level: Literal["debug", "info", "warn", "error"] = "info"
    log_format: Literal["text", "json"] = "text"
