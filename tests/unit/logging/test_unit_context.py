# tests/unit/logging/test_unit_context.py - v3
"""Tests for logging/context.py - run/command/step context variables."""

from __future__ import annotations

import asyncio

import pytest

from runmanifest.logging.context import (
    clear_context,
    get_context,
    set_run_context,
    set_step_context,
)


class TestLogContext:
    def setup_method(self):
        clear_context()

    def teardown_method(self):
        clear_context()

    def test_initial_state(self):
        ctx = get_context()
        assert ctx.run_id is None
        assert ctx.command is None
        assert ctx.step is None

    def test_set_run_context(self):
        set_run_context("run-1", "seed:tenant")
        ctx = get_context()
        assert ctx.run_id == "run-1"
        assert ctx.command == "seed:tenant"

    def test_set_and_clear_step(self):
        set_step_context("PLAN")
        assert get_context().step == "PLAN"
        set_step_context(None)
        assert get_context().step is None

    def test_as_dict_filters_none(self):
        set_run_context("run-1", "seed:tenant")
        d = get_context().as_dict()
        assert d == {"run_id": "run-1", "command": "seed:tenant"}

    def test_clear(self):
        set_run_context("run-1", "seed:tenant")
        set_step_context("EXECUTE")
        clear_context()
        ctx = get_context()
        assert ctx.run_id is None
        assert ctx.step is None

    @pytest.mark.asyncio
    async def test_tasks_do_not_share_context(self):
        async def worker(run_id: str) -> str | None:
            set_run_context(run_id, "cmd")
            await asyncio.sleep(0)
            return get_context().run_id

        results = await asyncio.gather(worker("a"), worker("b"))
        assert results == ["a", "b"]

    def test_new_run_drops_open_step(self):
        set_run_context("run-1", "seed:tenant")
        set_step_context("EXECUTE")
        set_run_context("run-2", "seed:tenant")
        assert get_context().step is None
        assert get_context().run_id == "run-2"

    def test_snapshot_is_immutable(self):
        set_run_context("run-1", "seed:tenant")
        snapshot = get_context()
        set_step_context("PLAN")
        assert snapshot.step is None
