"""Request guards for the HTTP surface: feature flags, API secret, webhook authentication.

An empty configured secret disables the corresponding check.
"""

from __future__ import annotations

import hashlib
import hmac
from typing import Mapping

from config.settings import FeatureFlags
from errors import FeatureDisabledError, UnauthorizedError
from utils import first_header


def require_api_enabled(flags: FeatureFlags) -> None:
    if not flags.api_enabled:
        raise FeatureDisabledError("API")


def require_webhook_enabled(flags: FeatureFlags) -> None:
    if not flags.webhook_enabled:
        raise FeatureDisabledError("Webhook")


def check_api_secret(flags: FeatureFlags, headers: Mapping[str, str]) -> None:
    if not flags.api_secret:
        return
    provided = first_header(headers, "X-API-Secret") or ""
    if not hmac.compare_digest(provided.encode("utf-8"), flags.api_secret.encode("utf-8")):
        raise UnauthorizedError("Invalid API secret")


def github_signature(secret: str, body: bytes) -> str:
    return "sha256=" + hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()


def check_webhook_secret(flags: FeatureFlags, headers: Mapping[str, str], body: bytes) -> None:
    """Verify GitHub's X-Hub-Signature-256 and/or GitLab's X-Gitlab-Token when present.

    Requests carrying neither header are rejected once a secret is configured.
    """
    secret = flags.webhook_secret
    if not secret:
        return

    gh_signature = first_header(headers, "X-Hub-Signature-256")
    gl_token = first_header(headers, "X-Gitlab-Token")
    if gh_signature is None and gl_token is None:
        raise UnauthorizedError("Missing webhook signature")

    if gh_signature is not None:
        expected = github_signature(secret, body)
        if not hmac.compare_digest(gh_signature.encode("utf-8"), expected.encode("utf-8")):
            raise UnauthorizedError("Invalid webhook signature")
    if gl_token is not None:
        if not hmac.compare_digest(gl_token.encode("utf-8"), secret.encode("utf-8")):
            raise UnauthorizedError("Invalid webhook token")
