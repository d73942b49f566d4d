from apscheduler.triggers.cron import CronTrigger

from leadflow.modules.scheduler.jobs import build_ticker, create_scheduler
from leadflow.modules.scheduler.tick import JobSummary, Ticker
from tests.conftest import T0


class Recorder:
    def __init__(self, name, fail=False):
        self.name = name
        self.fail = fail
        self.seen = []

    async def run(self, now):
        self.seen.append(now)
        if self.fail:
            raise RuntimeError(f"{self.name} broke")
        return JobSummary(processed=1, succeeded=1)


async def test_crashing_job_does_not_stop_the_others():
    first, broken, last = Recorder("first"), Recorder("broken", fail=True), Recorder("last")

    result = await Ticker([first, broken, last]).tick(T0)

    assert result["first"].succeeded == 1
    assert result["broken"].error == "broken broke"
    assert result["last"].succeeded == 1
    assert first.seen == broken.seen == last.seen == [T0]


async def test_job_lookup_by_name(session_factory):
    ticker = build_ticker(session_factory)
    assert [j.name for j in ticker.jobs] == ["pool_monitor", "delay_processor", "stage_sweep", "sla_checker"]
    assert ticker.job("stage_sweep") is ticker.jobs[2]
    assert ticker.job("missing") is None


async def test_scheduler_runs_tick_every_minute(session_factory):
    ticker = build_ticker(session_factory)
    scheduler = create_scheduler(ticker)
    jobs = scheduler.get_jobs()
    assert len(jobs) == 1
    assert isinstance(jobs[0].trigger, CronTrigger)
    assert jobs[0].max_instances == 1
