"""Pytest configuration and shared fixtures."""

import json

import pytest

from embeddings.embedder import Embedder
from main import initialize_system
from qa.storage import create_session_factory

EMBEDDING_DIM = 8

REPORT_TEXT = "".join("测" * 79 + "。" for _ in range(19))[:1500]


class FakeEmbeddingProvider:
    """Returns a fixed vector per text, or a shared default vector."""

    def __init__(self, vectors=None, default=None, fail_on=None, dimension=EMBEDDING_DIM):
        self.dimension = dimension
        self.vectors = vectors or {}
        self.default = default or [1.0] * dimension
        self.fail_on = fail_on
        self.calls = []

    def generate_embedding(self, text, model_id=None, timeout_ms=None):
        self.calls.append(text)
        if self.fail_on and self.fail_on in text:
            raise RuntimeError("provider unavailable")
        return self.vectors.get(text, self.default)


class ScriptedLLM:
    """Plays back responses in order; exceptions in the script are raised."""

    def __init__(self, *script):
        self.script = list(script)
        self.prompts = []

    def generate(self, prompt, timeout_ms=None):
        self.prompts.append(prompt)
        item = self.script.pop(0) if len(self.script) > 1 else self.script[0]
        if isinstance(item, Exception):
            raise item
        return item

    @property
    def calls(self):
        return len(self.prompts)


def answer_json(answer="根据报告，您的事业运势向好。", citations=(1,), follow_ups=()):
    return json.dumps(
        {
            "promptVersion": "qa_answer_v1",
            "answer": answer,
            "citations": list(citations),
            "followUps": list(follow_ups),
        },
        ensure_ascii=False,
    )


@pytest.fixture
def no_sleep():
    """Sleep replacement that records requested delays."""
    delays = []

    def sleep(seconds):
        delays.append(seconds)

    sleep.delays = delays
    return sleep


@pytest.fixture
def session_factory():
    return create_session_factory("sqlite://")


@pytest.fixture
def embedding_provider():
    return FakeEmbeddingProvider()


@pytest.fixture
def embedder(embedding_provider, no_sleep):
    return Embedder(embedding_provider, sleep=no_sleep)


@pytest.fixture
def llm():
    return ScriptedLLM(answer_json())


@pytest.fixture
def make_system(tmp_path, embedding_provider, no_sleep):
    """Build a fully wired in-memory system around a given LLM."""

    def _make(llm, index_dir=None):
        return initialize_system(
            database_url="sqlite://",
            index_dir=index_dir,
            embedding_provider=embedding_provider,
            llm=llm,
            log_file=str(tmp_path / "query_log.json"),
            sleep=no_sleep,
        )

    return _make
