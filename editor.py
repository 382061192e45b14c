import enum
import logging
import os
import threading
import time
from dataclasses import dataclass
from typing import Optional

import codec
from suggestions import GENERIC_FAILURE, SUGGESTIONS

logger = logging.getLogger(__name__)


class SessionState(enum.Enum):
    IDLE = "IDLE"
    PROCESSING = "PROCESSING"
    SUCCESS = "SUCCESS"
    ERROR = "ERROR"


class Outcome(enum.Enum):
    """What a generate call did."""

    REJECTED = "rejected"
    APPLIED = "applied"
    STALE = "stale"


@dataclass(frozen=True, eq=False)
class SourceImage:
    """The user's original upload. Compared by identity."""

    file: object
    media_type: str
    filename: str = ""

    @property
    def size(self):
        if isinstance(self.file, (bytes, bytearray, memoryview)):
            return len(self.file)
        if isinstance(self.file, (str, os.PathLike)):
            return os.path.getsize(self.file)
        return None


@dataclass(frozen=True)
class EditResult:
    image_url: str
    prompt: str
    timestamp: int


def now_ms():
    return int(time.time() * 1000)


class EditorSession:
    """One user's editing session: source image, prompt, result and state.

    Every upload, reset and generate bumps ``generation``. A client response
    is applied only while its generation is still current, so a reply that
    arrives after the user moved on is dropped.
    """

    def __init__(self, client, suggestions=SUGGESTIONS):
        self.client = client
        self.suggestions = list(suggestions)
        self._lock = threading.Lock()
        self.generation = 0
        self.state = SessionState.IDLE
        self.source: Optional[SourceImage] = None
        self.preview: Optional[str] = None
        self.result: Optional[EditResult] = None
        self.error: Optional[str] = None
        self.prompt = ""

    @property
    def can_generate(self):
        return (
            self.source is not None
            and bool(self.prompt.strip())
            and self.state is not SessionState.PROCESSING
        )

    def select_image(self, source):
        encoded = codec.encode(source.file)
        with self._lock:
            self.generation += 1
            self.source = source
            self.preview = codec.to_data_url(source.media_type, encoded)
            self.result = None
            self.error = None
            self.state = SessionState.IDLE
        logger.info("Selected %s (%s, %s bytes)", source.filename or "image", source.media_type, source.size)

    def set_prompt(self, text):
        with self._lock:
            self.prompt = text or ""

    def apply_suggestion(self, index):
        if index < 0:
            raise IndexError(f"No suggestion at index {index}")
        self.set_prompt(self.suggestions[index])

    def reset(self):
        with self._lock:
            self.generation += 1
            self.source = None
            self.preview = None
            self.result = None
            self.error = None
            self.prompt = ""
            self.state = SessionState.IDLE

    def generate(self):
        """Run one edit of the current image and report what became of it.

        The image is read outside the lock and before the state moves to
        PROCESSING, so an ``IOError`` propagates with the session untouched.
        If the session changed while the file was read, nothing is issued.
        """
        with self._lock:
            if not self.can_generate:
                return Outcome.REJECTED
            source, seen = self.source, self.generation

        encoded = codec.encode(source.file)

        with self._lock:
            if self.generation != seen or self.source is not source or not self.can_generate:
                return Outcome.REJECTED
            prompt = self.prompt
            self.generation += 1
            ticket = self.generation
            self.state = SessionState.PROCESSING
            self.error = None

        start = time.time()
        try:
            image_url = self.client.request_edit(encoded, source.media_type, prompt)
        except Exception as e:
            logger.error("Generate failed: %s", e)
            applied = self._finish(ticket, error=str(e) or GENERIC_FAILURE)
        else:
            logger.info("Generated edit in %.1fs", time.time() - start)
            applied = self._finish(ticket, result=EditResult(image_url, prompt, now_ms()))
        return Outcome.APPLIED if applied else Outcome.STALE

    def _finish(self, ticket, result=None, error=None):
        with self._lock:
            if ticket != self.generation:
                logger.info("Dropping stale response for generation %d (now %d)", ticket, self.generation)
                return False
            if error is not None:
                self.state = SessionState.ERROR
                self.error = error
            else:
                self.state = SessionState.SUCCESS
                self.result = result
            return True

    def download_name(self, at_ms=None):
        return f"nanoedit-{now_ms() if at_ms is None else at_ms}.png"

    def view(self):
        with self._lock:
            return {
                "state": self.state.value,
                "prompt": self.prompt,
                "preview": self.preview,
                "filename": self.source.filename if self.source else None,
                "result": self.result.image_url if self.result else None,
                "result_prompt": self.result.prompt if self.result else None,
                "error": self.error,
                "can_generate": self.can_generate,
                "suggestions": self.suggestions,
            }
