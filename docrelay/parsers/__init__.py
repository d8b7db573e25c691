"""Document parsing backends and the job state machine that drives them."""

import os

from docrelay.config.models import HTTPConfig, ParserConfig
from docrelay.parsers.aliyun import AliyunParser
from docrelay.parsers.base import DocumentParser
from docrelay.parsers.job import JobRunner
from docrelay.parsers.mineru import MinerUParser
from docrelay.parsers.models import ConversionJob, JobState, ParseOutput, PollResult, PollStatus
from docrelay.transport import create_http_client

PARSER_TAGS = ("aliyun", "mineru")


def _require_env(var: str, provider: str) -> str:
    value = os.environ.get(var, "")
    if not value:
        raise ValueError(f"{provider} credentials not found. Set the {var} environment variable.")
    return value


def create_parser(
    config: ParserConfig,
    http: HTTPConfig | None = None,
    provider: str | None = None,
) -> DocumentParser:
    """Create a parser for *provider* (defaults to config.provider).

    Resolves the API credential from the environment variable named in
    config and raises ValueError when it is unset.
    """
    http = http or HTTPConfig()
    tag = provider or config.provider
    if tag == "aliyun":
        key = _require_env(config.aliyun.api_key_env, "Aliyun DocMind")
        client = create_http_client(http, base_url=config.aliyun.base_url, token=key)
        return AliyunParser(config.aliyun, client)
    if tag == "mineru":
        token = _require_env(config.mineru.token_env, "MinerU")
        client = create_http_client(http, base_url=config.mineru.base_url, token=token)
        return MinerUParser(config.mineru, client, transfer_client=create_http_client(http))
    raise ValueError(
        f"Unsupported parser provider: {tag!r}. Supported: {', '.join(PARSER_TAGS)}"
    )


__all__ = [
    "AliyunParser",
    "ConversionJob",
    "DocumentParser",
    "JobRunner",
    "JobState",
    "MinerUParser",
    "PARSER_TAGS",
    "ParseOutput",
    "PollResult",
    "PollStatus",
    "create_parser",
]
