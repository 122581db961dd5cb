import random

import pytest

from app.services.access_code import ALPHABET, allocate_access_code, generate_access_code
from app.services.errors import AllocationExhausted


def test_generate_access_code_shape():
    code = generate_access_code(5, rng=random.Random(1))
    assert len(code) == 5
    assert all(c in ALPHABET for c in code)
    assert code == code.upper()


def test_generate_access_code_is_reproducible_with_seed():
    assert generate_access_code(6, random.Random(42)) == generate_access_code(6, random.Random(42))


def test_allocate_retries_on_collision():
    rng = random.Random(7)
    first = generate_access_code(5, random.Random(7))
    taken = {first}

    code = allocate_access_code(lambda c: c in taken, length=5, max_attempts=5, rng=rng)

    assert code != first
    assert code not in taken


def test_allocate_raises_when_exhausted():
    with pytest.raises(AllocationExhausted):
        allocate_access_code(lambda c: True, length=5, max_attempts=3)
