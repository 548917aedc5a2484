"""Vision-language gateway backed by DashScope qwen-vl."""

from __future__ import annotations

import base64
import logging
from typing import Optional

import dashscope

from errors import EMPTY_RESPONSE, GatewayError, classify_exception
from models import MediaContent
from speech_gateway import check_status, extract_text, resolve_api_key

logger = logging.getLogger(__name__)


def image_data_uri(media: MediaContent) -> str:
    encoded = base64.b64encode(media.data).decode("ascii")
    return f"data:{media.mime_type or 'image/jpeg'};base64,{encoded}"


class DashscopeVisionGateway:
    """Sends one prompt plus exactly one image per call."""

    def __init__(
        self,
        api_key: str,
        model: str = "qwen-vl-plus",
        request_timeout_s: Optional[float] = None,
    ) -> None:
        self._api_key = api_key
        self._model = model
        self._request_timeout_s = request_timeout_s

    def generate(self, prompt: str, media: MediaContent) -> str:
        api_key = resolve_api_key(self._api_key)
        kwargs = {}
        if self._request_timeout_s is not None:
            kwargs["timeout"] = self._request_timeout_s
        logger.debug("generate: prompt %d chars, image %d bytes", len(prompt), len(media.data))
        try:
            response = dashscope.MultiModalConversation.call(
                api_key=api_key,
                model=self._model,
                messages=[
                    {
                        "role": "user",
                        "content": [{"image": image_data_uri(media)}, {"text": prompt}],
                    }
                ],
                **kwargs,
            )
        except Exception as exc:
            raise GatewayError(str(exc), code=classify_exception(exc)) from exc

        check_status(response)
        text = extract_text(response).strip()
        if not text:
            raise GatewayError(code=EMPTY_RESPONSE)
        return text
