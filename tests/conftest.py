"""
Shared fixtures: a scripted vision model and throwaway pipelines.

No test talks to the real Gemini endpoint.
"""

import io
import asyncio
from typing import Dict, List, Union

import pytest
from PIL import Image

from gradescan.services.extraction import BaseVisionExtractor, ModelReply, ModelTier, ScanService
from gradescan.services.pipeline import ScanPipeline
from gradescan.services.storage import MemoryStore


Reply = Union[str, ModelReply, Exception, float]


class ScriptedExtractor(BaseVisionExtractor):
    """
    Answers from a per-tier script, one entry per call.

    An entry is the reply text, a ModelReply, an exception to raise, or a
    float meaning "sleep that many seconds then answer '{}'".
    """

    def __init__(self, script: Dict[str, List[Reply]]):
        self.script = {tier: list(replies) for tier, replies in script.items()}
        self.calls: List[ModelTier] = []

    async def generate(self, image: bytes, mime_type: str, prompt: str, tier: ModelTier) -> ModelReply:
        self.calls.append(tier)
        replies = self.script.get(tier.name) or []
        if not replies:
            raise AssertionError(f"unexpected call on the {tier.name} tier")

        reply = replies.pop(0)
        if isinstance(reply, Exception):
            raise reply
        if isinstance(reply, float):
            await asyncio.sleep(reply)
            return ModelReply(text="{}", model=tier.model)
        if isinstance(reply, ModelReply):
            return reply
        return ModelReply(text=reply, model=tier.model)

    async def health_check(self) -> bool:
        return True


def make_image(width: int = 100, height: int = 100, fmt: str = "PNG") -> bytes:
    img = Image.new("RGB", (width, height), color="white")
    buffer = io.BytesIO()
    img.save(buffer, format=fmt)
    return buffer.getvalue()


@pytest.fixture
def png_bytes():
    return make_image()


@pytest.fixture
def memory_store():
    return MemoryStore()


@pytest.fixture
def make_pipeline(memory_store):
    """Build a pipeline around a scripted model; pass None for manual mode only."""
    def _make(script=None):
        scanner = ScanService(extractor=ScriptedExtractor(script) if script is not None else None)
        scanner._initialized = True
        return ScanPipeline(scanner=scanner, store=memory_store)
    return _make
