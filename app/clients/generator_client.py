from __future__ import annotations

import logging
from typing import Optional

import requests
from pydantic import ValidationError as PydanticValidationError

from app.schemas.generation import GenerationSpec, GeneratorResult

logger = logging.getLogger(__name__)


class GeneratorError(Exception):
    pass


class GeneratorTimeout(GeneratorError):
    pass


class HttpCodeGenerator:
    """
    Client for the external AI code-generation service.

    POSTs the project spec and expects
      {files: [{path, content, language}], packageManifest, readme,
       totalFiles, totalLines, tokensUsed}
    Anything else is rejected with GeneratorError.
    """
    def __init__(
        self,
        url: str,
        *,
        api_key: Optional[str] = None,
        timeout: float = 1200.0,
        session: Optional[requests.Session] = None,
    ):
        self.url = url
        self.api_key = api_key
        self.timeout = timeout
        self.session = session or requests.Session()

    def generate(self, spec: GenerationSpec) -> GeneratorResult:
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"

        try:
            resp = self.session.post(
                self.url,
                json=spec.model_dump(by_alias=True, mode="json"),
                headers=headers,
                timeout=(10, self.timeout),
            )
            resp.raise_for_status()
            payload = resp.json()
        except requests.exceptions.Timeout as e:
            raise GeneratorTimeout("timeout") from e
        except requests.exceptions.RequestException as e:
            raise GeneratorError(f"generator request failed: {e}") from e
        except ValueError as e:
            raise GeneratorError("generator returned non-JSON body") from e

        try:
            return GeneratorResult.model_validate(payload)
        except PydanticValidationError as e:
            logger.warning("generator returned malformed payload", extra={"errors": e.error_count()})
            raise GeneratorError("AI generation returned invalid structure") from e
