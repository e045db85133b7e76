import pytest

from tests.helpers import FakeTokenizer


@pytest.fixture
def tokenizer():
    return FakeTokenizer()
