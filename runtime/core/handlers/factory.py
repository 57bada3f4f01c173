"""Select the discovery handler from configuration."""

from __future__ import annotations

from config.settings import HandlerConfig
from errors import ConfigurationError
from handlers.github import GitHubHandler
from handlers.gitlab import GitLabHandler
from handlers.interfaces import Handler
from handlers.payloads import PayloadValidator


def build_handler(config: HandlerConfig, *, payloads: PayloadValidator) -> Handler:
    if config.kind == "github":
        return GitHubHandler(config, payloads=payloads)
    if config.kind == "gitlab":
        return GitLabHandler(config, payloads=payloads)
    raise ConfigurationError(f"Handler {config.kind} not found")
