# tests/base/test_params.py
import pytest

from async_liteorm.base.exceptions import ParameterCapacityExceededException
from async_liteorm.base.params import DEFAULT_MAX_PARAMS, SafeIds, SQLParams


def test_safe_ids_are_unique_until_exhausted():
    ids = SafeIds(50)
    popped = [ids.pop() for _ in range(50)]
    assert len(set(popped)) == 50
    with pytest.raises(ParameterCapacityExceededException):
        ids.pop()


def test_add_returns_prefixed_token_and_records_value():
    params = SQLParams()
    token = params.add("Lorem")
    assert token.startswith("$")
    assert params.data[token] == "Lorem"
    assert params.values == {token[1:]: "Lorem"}
    assert len(params) == 1


def test_pop_then_assign():
    params = SQLParams()
    token = params.pop()
    assert len(params) == 0
    params.assign(token, 42)
    assert params.values[token[1:]] == 42

    with pytest.raises(ValueError):
        params.assign("no_prefix", 1)


def test_default_capacity_raises_on_the_1000th_value():
    params = SQLParams()
    for i in range(DEFAULT_MAX_PARAMS):
        params.add(i)
    with pytest.raises(ParameterCapacityExceededException):
        params.add("one too many")


def test_binders_are_independent():
    a, b = SQLParams(3), SQLParams(3)
    for i in range(3):
        a.add(i)
    # exhausting one binder leaves the other untouched
    assert b.add("x").startswith("$")
