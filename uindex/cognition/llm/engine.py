import gc
import logging
import os
import threading
from abc import ABC, abstractmethod
from typing import Dict, List, Optional

from ...core.config import LLMConfig, ROOT_DIR
from ...core.events import EventBus, EventType

logger = logging.getLogger(__name__)

JSON_SYSTEM_PROMPT = "You plan desktop UI automation. Respond with valid JSON only. No other text."


class LLMClient(ABC):
    """Anything that turns a prompt into completion text."""

    @abstractmethod
    def complete(self, prompt: str) -> str:
        pass


class LLMEngine(LLMClient):
    """Local llama.cpp model, loaded on first use."""

    def __init__(self, config: Optional[LLMConfig] = None, events: Optional[EventBus] = None):
        self.config = config or LLMConfig()
        self.events = events or EventBus()
        self._model = None
        self._model_loaded = False
        self._load_lock = threading.Lock()

        if os.path.isabs(self.config.model_path):
            self._model_path = self.config.model_path
        else:
            self._model_path = str(ROOT_DIR / self.config.model_path)

        if not os.path.exists(self._model_path):
            raise FileNotFoundError(f"Model not found {self._model_path}")

    def _load_model(self) -> None:
        if self._model_loaded:
            return

        with self._load_lock:
            if self._model_loaded:
                return
            from llama_cpp import Llama

            logger.info("Loading model: %s", self._model_path)
            self.events.emit_simple(EventType.LLM_LOADING, source="LLMEngine")
            self._model = Llama(
                model_path=self._model_path,
                n_ctx=self.config.context_length,
                n_gpu_layers=self.config.gpu_layers,
                n_threads=self.config.threads,
                verbose=False
            )
            self._model_loaded = True
            logger.info("Model loaded")
            self.events.emit_simple(EventType.LLM_LOADED, source="LLMEngine")

    def chat(self, messages: List[Dict[str, str]], system_prompt: Optional[str] = None) -> str:
        self._load_model()

        full_messages = []
        if system_prompt:
            full_messages.append({"role": "system", "content": system_prompt})
        full_messages.extend(messages)

        output = self._model.create_chat_completion(
            messages=full_messages,
            max_tokens=self.config.max_tokens,
            temperature=self.config.temperature
        )
        return output["choices"][0]['message']['content'].strip()

    def complete(self, prompt: str) -> str:
        return self.chat([{"role": "user", "content": prompt}], JSON_SYSTEM_PROMPT)

    def unload(self) -> None:
        if self._model is not None:
            del self._model
            self._model = None
            self._model_loaded = False
            gc.collect()
            self.events.emit_simple(EventType.LLM_UNLOADED, source="LLMEngine")
