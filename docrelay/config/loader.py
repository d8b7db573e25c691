"""Locate, read and validate docrelay.yaml.

Credentials never live in the file itself: backends name the environment
variable holding their secret, and any other value may reference the
environment as ``${VAR}``.
"""

import os
import re
from pathlib import Path

import yaml
from pydantic import ValidationError

from .models import DocRelayConfig

_ENV_REF = re.compile(r"\$\{(\w+)\}")


def _candidate_paths(cli_path: str | None) -> list[Path]:
    paths = [Path(cli_path)] if cli_path else []
    paths.append(Path("docrelay.yaml"))
    paths.append(Path.home() / ".docrelay" / "config.yaml")
    return paths


def load_config(cli_path: str | None = None) -> DocRelayConfig:
    """Return the first non-empty config found, or the built-in defaults.

    Looks at *cli_path*, then ``./docrelay.yaml``, then
    ``~/.docrelay/config.yaml``. Raises ValueError naming the file when
    it is not valid YAML or does not fit the schema.
    """
    for path in _candidate_paths(cli_path):
        if not path.is_file():
            continue
        try:
            raw = yaml.safe_load(path.read_text(encoding="utf-8"))
        except yaml.YAMLError as e:
            raise ValueError(f"Invalid YAML in {path}: {e}") from e
        if not raw:
            continue
        try:
            return DocRelayConfig.model_validate(_expand_env_vars(raw))
        except ValidationError as e:
            raise ValueError(f"Invalid config in {path}: {e}") from e

    return DocRelayConfig()


def _expand_env_vars(value: object) -> object:
    """Substitute ``${VAR}`` in every string of a parsed YAML tree; unset vars become ''."""
    if isinstance(value, str):
        return _ENV_REF.sub(lambda m: os.environ.get(m.group(1), ""), value)
    if isinstance(value, dict):
        return {key: _expand_env_vars(item) for key, item in value.items()}
    if isinstance(value, list):
        return [_expand_env_vars(item) for item in value]
    return value


# Written by `docrelay config init`
DEFAULT_CONFIG_TEMPLATE = """\
# docrelay.yaml

# Document parsing backend
parser:
  provider: "aliyun"           # aliyun | mineru
  polling:
    interval_ms: 3000
    max_attempts: 200
  aliyun:
    base_url: "https://docmind-api.cn-hangzhou.aliyuncs.com"
    api_key_env: "ALIYUN_DOCMIND_API_KEY"
    llm_enhancement: true
    enhancement_mode: "VLM"
    output_html_table: false
    layout_step_size: 1000
  mineru:
    base_url: "https://mineru.net/api/v4"
    token_env: "MINERU_API_TOKEN"
    model_version: "vlm"
    enable_formula: true
    enable_table: true
    is_ocr: false
    language: "ch"

# Image storage
storage:
  provider: "bucket"           # bucket | github
  namespace: "default"         # knowledge base id used when none is given
  bucket:
    bucket: ""
    # endpoint_url: "https://oss-cn-hangzhou.aliyuncs.com"
    region: "us-east-1"
    access_key_id_env: "BUCKET_ACCESS_KEY_ID"
    secret_access_key_env: "BUCKET_SECRET_ACCESS_KEY"
    # public_url: "https://img.example.com"
  github:
    repo: ""                   # owner/name
    branch: "main"
    path_prefix: "images/"
    cdn: "cdn.jsdelivr.net"
    token_env: "GITHUB_TOKEN"

# Uploads
files:
  tmp_dir: ".docrelay/tmp"
  allowed_types: [pdf, doc, docx]
  max_size_mb: 50

# Network timeouts (seconds)
http:
  connect_timeout: 60
  read_timeout: 60
  write_timeout: 60

images:
  max_concurrency: 4

# Logging
log_level: "info"              # debug | info | warn | error
log_format: "text"             # text | json
"""
