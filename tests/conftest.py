from __future__ import annotations

import asyncio
import io
import logging
from typing import Dict, List, Optional, Set

import pytest
from PIL import Image


def make_png(color=(200, 40, 40), size=(64, 48)) -> bytes:
    buffer = io.BytesIO()
    Image.new("RGB", size, color).save(buffer, format="PNG")
    return buffer.getvalue()


class StubClient:
    """Records every call and keeps track of how many are outstanding."""

    def __init__(
        self,
        *,
        delays: Optional[Dict[str, float]] = None,
        failures: Optional[Set[str]] = None,
        gates: Optional[Dict[str, asyncio.Event]] = None,
        on_call=None,
    ) -> None:
        self.delays = delays or {}
        self.failures = failures or set()
        self.gates = gates or {}
        self.on_call = on_call
        self.calls: List[str] = []
        self.in_flight = 0
        self.max_in_flight = 0
        self.completed = 0

    async def generate(self, source_image: bytes, prompt: str) -> bytes:
        self.calls.append(prompt)
        if self.on_call is not None:
            self.on_call(prompt)
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            gate = self.gates.get(prompt)
            if gate is not None:
                await gate.wait()
            await asyncio.sleep(self.delays.get(prompt, 0.001))
            if prompt in self.failures:
                raise RuntimeError(f"service rejected {prompt}")
            self.completed += 1
            return make_png(color=(self.completed * 30 % 255, 90, 160))
        finally:
            self.in_flight -= 1


@pytest.fixture
def logger() -> logging.Logger:
    return logging.getLogger("pastforward-test")


@pytest.fixture
def source_image() -> bytes:
    return make_png()
