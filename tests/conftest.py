import os
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

os.environ.setdefault('APP_ENV', 'test')
os.environ.setdefault('DATABASE_URL', 'sqlite://')
os.environ.setdefault('OPENROUTER_API_KEY', 'test-key')
os.environ.setdefault('OPENAI_API_KEY', 'test-key')
os.environ.setdefault('PII_DETECTION_ENABLED', 'true')

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from nexus.core.exceptions import UpstreamError
from nexus.core.identity import CallerIdentity
from nexus.guardrails.policy import GuardrailAction, GuardrailPolicy, PolicyCache
from nexus.llm.gateway import ModelGateway
from nexus.models import Base, LLMModel

VOCABULARY = ('cat', 'dog', 'invoice', 'python')


class FakeGateway(ModelGateway):
    """Echoing gateway; aliases listed in `failures` raise the given error."""

    name = 'fake'
    translations = {'fast': 'vendor/fast-1'}

    def __init__(self, reply='ok', failures=None, usage=(10, 5)):
        self.reply = reply
        self.failures = dict(failures or {})
        self.usage = usage
        self.calls = []

    async def complete(self, model_id, messages, *, temperature, max_tokens):
        self.calls.append({'model': model_id, 'messages': messages, 'temperature': temperature, 'max_tokens': max_tokens})
        if model_id in self.failures:
            raise self.failures[model_id]
        return {
            'content': self.reply,
            'input_tokens': self.usage[0],
            'output_tokens': self.usage[1],
            'model': model_id,
        }


class FakeEmbedder:
    """Bag-of-words over a tiny vocabulary so similarity is predictable."""

    def __init__(self, fail=False):
        self.fail = fail
        self.calls = 0

    async def embed(self, texts):
        self.calls += 1
        if self.fail:
            raise UpstreamError('Embedding service unreachable')
        vectors = []
        for text in texts:
            lowered = text.lower()
            vectors.append([float(lowered.count(word)) for word in VOCABULARY])
        return vectors


def static_cache(policy):
    return PolicyCache(lambda: policy, ttl_seconds=60)


@pytest.fixture
def db_session():
    engine = create_engine(
        'sqlite://',
        connect_args={'check_same_thread': False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    session = sessionmaker(autocommit=False, autoflush=False, bind=engine)()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)
        engine.dispose()


@pytest.fixture
def caller():
    return CallerIdentity(user_id='user-1', role='member')


@pytest.fixture
def fake_gateway():
    return FakeGateway()


@pytest.fixture
def fake_embedder():
    return FakeEmbedder()


@pytest.fixture
def redact_all_cache():
    return static_cache(GuardrailPolicy.fail_closed())


@pytest.fixture
def block_cache():
    return static_cache(GuardrailPolicy.from_record(True, None, GuardrailAction.BLOCK.value, []))


@pytest.fixture
def catalog(db_session):
    models = [
        LLMModel(provider='openrouter', model_name='fast', display_name='Fast', cost_per_1k_input_tokens=0.5, cost_per_1k_output_tokens=1.5),
        LLMModel(provider='openrouter', model_name='slow', display_name='Slow', cost_per_1k_input_tokens=2, cost_per_1k_output_tokens=4),
        LLMModel(provider='anthropic', model_name='broken', display_name='Broken', cost_per_1k_input_tokens=1, cost_per_1k_output_tokens=1),
    ]
    db_session.add_all(models)
    db_session.commit()
    return {m.model_name: m for m in models}
