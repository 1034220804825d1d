"""Tests for the enhancement combinator."""

import asyncio

import pytest

from lovassist.enhancement import Enhancement, attempt


@pytest.mark.asyncio
async def test_attempt_success():
    async def op():
        return [1, 2]

    outcome = await attempt(op, timeout=1.0, label="test")
    assert outcome.ok
    assert outcome.or_else([]) == [1, 2]


@pytest.mark.asyncio
async def test_attempt_failure_falls_back():
    async def op():
        raise RuntimeError("boom")

    outcome = await attempt(op, timeout=1.0, label="test")
    assert not outcome.ok
    assert isinstance(outcome.error, RuntimeError)
    assert outcome.or_else("original") == "original"


@pytest.mark.asyncio
async def test_attempt_timeout_falls_back():
    async def op():
        await asyncio.sleep(5)
        return "late"

    outcome = await attempt(op, timeout=0.01, label="test")
    assert isinstance(outcome.error, asyncio.TimeoutError)
    assert outcome.or_else("original") == "original"


def test_map_applies_only_on_success():
    assert Enhancement.success(2).map(lambda v: v * 10).or_else(0) == 20
    failed = Enhancement.failure(ValueError("x"))
    assert failed.map(lambda v: v * 10) is failed


def test_map_captures_errors():
    def explode(_):
        raise KeyError("k")

    mapped = Enhancement.success(1).map(explode)
    assert isinstance(mapped.error, KeyError)
    assert mapped.or_else(5) == 5

