"""DeepSeek chat completion request handler."""

from __future__ import annotations

from typing import Any, Final

import httpx
import structlog

from storyloom.domain.ai.providers.deepseek.connection import build_endpoint, build_headers
from storyloom.domain.ai.providers.deepseek.errors import PROVIDER, DeepSeekAPIError
from storyloom.domain.ai.providers.deepseek.request_builder import DeepSeekRequestBuilder
from storyloom.domain.ai.providers.deepseek.response_parser import DeepSeekResponseParser
from storyloom.domain.ai.requests import DEFAULT_SAMPLE_WINDOW, BaseRequestHandler, ProviderResult, RequestParams
from storyloom.domain.ai.schemas import DeepSeekConfig

logger = structlog.get_logger(__name__)

CHAT_COMPLETIONS_PATH: Final = "/v1/chat/completions"


class DeepSeekRequestHandler(BaseRequestHandler[DeepSeekConfig]):
    """POST one chat completion and reconcile the reply into game data.

    Transport errors from httpx propagate unchanged so the error processor can
    classify them.
    """

    provider = PROVIDER

    def __init__(
        self,
        *,
        client: httpx.AsyncClient | None = None,
        builder: DeepSeekRequestBuilder | None = None,
        sample_window: int = DEFAULT_SAMPLE_WINDOW,
    ) -> None:
        super().__init__(sample_window=sample_window)
        self._client = client
        self.builder = builder or DeepSeekRequestBuilder()

    async def perform_request(self, params: RequestParams[DeepSeekConfig]) -> ProviderResult:
        request = params.request
        body = self.builder.build_request(request.prompt, request.config)
        logger.debug("Sending DeepSeek chat completion", request_id=request.id, model=body["model"])

        response = await self._get_client().post(
            build_endpoint(params.config.api_url, CHAT_COMPLETIONS_PATH),
            json=body,
            headers=build_headers(params.config),
            timeout=params.timeout_ms / 1000,
        )
        if not response.is_success:
            raise DeepSeekAPIError.from_response(response)

        payload: Any = response.json()
        return DeepSeekResponseParser.parse(
            payload,
            request.id,
            status_config=request.metadata.status_config,
            extension_configs=request.metadata.extensions,
        )

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient()
        return self._client


__all__ = (
    "CHAT_COMPLETIONS_PATH",
    "DeepSeekRequestHandler",
)
