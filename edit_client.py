import base64
import logging

from google import genai
from google.genai import types
from google.genai.types import Modality

import config
from codec import to_data_url
from errors import NoImageReturned, UpstreamError

logger = logging.getLogger(__name__)

DEFAULT_RESULT_MIME = "image/png"


def extract_image(response):
    """Return a data URL for the first inline image part in ``response``.

    Candidates and their parts are scanned in order; text parts are skipped.
    """
    for candidate in response.candidates or []:
        content = candidate.content
        if content is None:
            continue
        for part in content.parts or []:
            blob = part.inline_data
            if blob is not None and blob.data:
                b64 = base64.b64encode(blob.data).decode("utf-8")
                return to_data_url(blob.mime_type or DEFAULT_RESULT_MIME, b64)
    raise NoImageReturned()


class EditClient:
    """Sends one image plus an instruction to a Gemini image model."""

    def __init__(self, api_key, model=config.IMAGE_MODEL, timeout_ms=config.REQUEST_TIMEOUT_MS):
        self.api_key = api_key
        self.model = model
        self.timeout_ms = timeout_ms
        self._client = None
        if not api_key:
            logger.error("GEMINI_API_KEY is missing from environment variables.")

    @property
    def configured(self):
        return bool(self.api_key)

    def _genai_client(self):
        if not self.api_key:
            raise UpstreamError("Gemini API key is not configured")
        if self._client is None:
            self._client = genai.Client(
                api_key=self.api_key,
                http_options=types.HttpOptions(timeout=self.timeout_ms),
            )
        return self._client

    def build_contents(self, encoded_payload, media_type, prompt_text):
        return types.Content(
            role="user",
            parts=[
                types.Part.from_text(text=prompt_text),
                types.Part.from_bytes(
                    data=base64.b64decode(encoded_payload),
                    mime_type=media_type,
                ),
            ],
        )

    def request_edit(self, encoded_payload, media_type, prompt_text):
        """Ask the model to edit the image and return the result as a data URL.

        Raises ``UpstreamError`` when the call fails and ``NoImageReturned``
        when the response holds no inline image. Nothing is retried.
        """
        contents = self.build_contents(encoded_payload, media_type, prompt_text)
        gen_config = types.GenerateContentConfig(
            response_modalities=[Modality.TEXT, Modality.IMAGE],
        )

        try:
            response = self._genai_client().models.generate_content(
                model=self.model, contents=contents, config=gen_config,
            )
        except UpstreamError:
            raise
        except Exception as e:
            logger.error("Gemini API error: %s", e)
            raise UpstreamError(str(e)) from e

        try:
            return extract_image(response)
        except NoImageReturned:
            logger.warning("Model %s returned no image for prompt %r", self.model, prompt_text)
            raise
