"""Tests for walletwatch/scheduler.py — APScheduler job wiring."""

from __future__ import annotations

import asyncio
from datetime import timedelta

import pytest
from apscheduler.schedulers.asyncio import AsyncIOScheduler

from walletwatch.config import WalletwatchConfig
from walletwatch.db import Database
from walletwatch.engine import STATUS_COMPLETED, PollEngine
from walletwatch.exceptions import ConfigInvalidError
from walletwatch.scheduler import POLL_JOB_ID, PollScheduler


def make_engine(db: Database, config: WalletwatchConfig) -> PollEngine:
    def no_fetcher(chain, cfg):
        raise AssertionError("no wallets are tracked")

    return PollEngine(db, config, fetcher_factory=no_fetcher)


@pytest.mark.asyncio
async def test_start_registers_interval_job(db: Database, sample_config: WalletwatchConfig) -> None:
    scheduler = AsyncIOScheduler(event_loop=asyncio.get_running_loop())
    poller = PollScheduler(make_engine(db, sample_config), scheduler=scheduler)

    poller.start(run_immediately=False)
    try:
        job = scheduler.get_job(POLL_JOB_ID)
        assert job is not None
        assert job.trigger.interval == timedelta(seconds=300)
        assert job.max_instances == 1
        assert job.coalesce is True
        assert scheduler.running
    finally:
        poller.shutdown()


@pytest.mark.asyncio
async def test_reschedule_clamps_and_skips_noop(db: Database, sample_config: WalletwatchConfig) -> None:
    scheduler = AsyncIOScheduler(event_loop=asyncio.get_running_loop())
    poller = PollScheduler(make_engine(db, sample_config), scheduler=scheduler)
    poller.start(run_immediately=False)
    try:
        assert poller.reschedule(900) is True
        assert scheduler.get_job(POLL_JOB_ID).trigger.interval == timedelta(seconds=900)
        assert poller.reschedule(900) is False

        assert poller.reschedule(5) is True
        assert poller.interval_seconds == 60
        assert scheduler.get_job(POLL_JOB_ID).trigger.interval == timedelta(seconds=60)
    finally:
        poller.shutdown()


@pytest.mark.asyncio
async def test_tick_reloads_config(db: Database, sample_config: WalletwatchConfig) -> None:
    scheduler = AsyncIOScheduler(event_loop=asyncio.get_running_loop())
    engine = make_engine(db, sample_config)
    reloaded = WalletwatchConfig()
    reloaded.poll.interval_seconds = 120
    poller = PollScheduler(engine, scheduler=scheduler, config_loader=lambda: reloaded)
    poller.start(run_immediately=False)
    try:
        summary = await poller._tick()
    finally:
        poller.shutdown()

    assert summary is not None
    assert summary.status == STATUS_COMPLETED
    assert engine.config is reloaded
    assert poller.interval_seconds == 120


@pytest.mark.asyncio
async def test_tick_keeps_old_config_on_reload_error(db: Database, sample_config: WalletwatchConfig) -> None:
    def broken_loader() -> WalletwatchConfig:
        raise ConfigInvalidError("bad toml")

    engine = make_engine(db, sample_config)
    poller = PollScheduler(
        engine,
        scheduler=AsyncIOScheduler(event_loop=asyncio.get_running_loop()),
        config_loader=broken_loader,
    )

    summary = await poller._tick()

    assert summary is not None
    assert engine.config is sample_config


@pytest.mark.asyncio
async def test_tick_swallows_poll_failure(db: Database, sample_config: WalletwatchConfig) -> None:
    engine = make_engine(db, sample_config)

    async def exploding_poll(manual: bool = False):
        raise RuntimeError("db went away")

    engine.poll = exploding_poll
    poller = PollScheduler(engine, scheduler=AsyncIOScheduler(event_loop=asyncio.get_running_loop()))

    assert await poller._tick() is None
