"""Process-lifetime handle around a lazily loaded feature model."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, List, Optional


class FeatureModelHandle:
    """Load the model on first use, exactly once, and share it afterwards.

    Concurrent first callers wait on the same load. A failed load is not
    remembered; the next call tries again. Inference is stateless, so once
    loaded the model is used without further locking.

    Args:
        runtime: Object exposing `load(model_uri)`, `infer(model, image_bytes)`
            and optionally `dispose(model)`. All three are blocking and run in
            a worker thread.
        model_uri: Identifier passed to `runtime.load`.
    """

    def __init__(self, runtime, model_uri: str) -> None:
        self._runtime = runtime
        self.model_uri = model_uri
        self._model: Optional[Any] = None
        self._lock = asyncio.Lock()
        self.load_count = 0

    @property
    def loaded(self) -> bool:
        return self._model is not None

    async def get(self) -> Any:
        if self._model is not None:
            return self._model
        async with self._lock:
            if self._model is None:
                model = await asyncio.to_thread(self._runtime.load, self.model_uri)
                self.load_count += 1
                self._model = model
        return self._model

    async def infer(self, image_bytes: bytes) -> Dict[str, List[float]]:
        model = await self.get()
        return await asyncio.to_thread(self._runtime.infer, model, image_bytes)

    async def close(self) -> None:
        """Dispose the model; called once on application shutdown."""
        async with self._lock:
            model, self._model = self._model, None
        if model is None:
            return
        dispose = getattr(self._runtime, "dispose", None)
        if dispose is not None:
            try:
                await asyncio.to_thread(dispose, model)
            except Exception as exc:
                logging.warning("Feature model dispose failed: %s", exc)
