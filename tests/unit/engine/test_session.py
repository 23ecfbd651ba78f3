"""A whole run mode invocation with a scripted executor."""

from __future__ import annotations

import io

import pytest

from specsheet.checks.execution import GlobalOptions
from specsheet.engine.documents import DocumentLoader
from specsheet.engine.scheduler import SchedulerConfig
from specsheet.engine.session import RunOptions, RunSession
from specsheet.ui.reporters import JsonLinesReporter, TapReporter
from specsheet.utils.concurrency import CancellationToken


def _session(inputs, executor, reporter, **options) -> RunSession:
    return RunSession(
        RunOptions(inputs=tuple(inputs), **options),
        loader=DocumentLoader(),
        reporter=reporter,
        global_options=GlobalOptions(),
        executor=executor,
    )


@pytest.mark.unit
async def test_each_document_is_its_own_section(write_document, fake_executor) -> None:
    fake_executor.respond("true")
    first = write_document("one.toml", '[[cmd]]\nshell = "true"\n')
    second = write_document("two.toml", '[[cmd]]\nshell = "false"\nstatus = 0\n')
    stream = io.StringIO()

    outcome = await _session([str(first), str(second)], fake_executor, TapReporter(stream)).run()

    assert outcome.checks_failed
    assert not outcome.documents_errored
    assert not outcome.interrupted
    assert len(outcome.summaries) == 2
    assert stream.getvalue().splitlines()[:4] == [
        "1..2",
        f"# {first}",
        "ok 1 - Command 'true' executes",
        f"# {second}",
    ]


@pytest.mark.unit
async def test_tap_run_announces_one_plan_across_documents(write_document, fake_executor) -> None:
    fake_executor.respond("true")
    first = write_document(
        "a.toml", '[[cmd]]\nshell = "true"\n\n[[cmd]]\nshell = "false"\nstatus = 0\n'
    )
    second = write_document("b.toml", '[[cmd]]\nshell = "true"\n')
    stream = io.StringIO()

    await _session(
        [str(first), str(second)],
        fake_executor,
        TapReporter(stream),
        scheduler=SchedulerConfig(threads=1),
    ).run()

    lines = stream.getvalue().splitlines()
    assert [line for line in lines if line.startswith("1..")] == ["1..3"]
    assert lines[0] == "1..3"
    assert [line.split(" - ")[0] for line in lines if "ok " in line] == [
        "ok 1",
        "not ok 2",
        "ok 3",
    ]


@pytest.mark.unit
async def test_tap_plan_leaves_out_unloadable_documents(
    write_document, fake_executor, tmp_path
) -> None:
    fake_executor.respond("true")
    good = write_document("good.toml", '[[cmd]]\nshell = "true"\n')
    stream = io.StringIO()

    await _session(
        [str(tmp_path / "absent.toml"), str(good)], fake_executor, TapReporter(stream)
    ).run()

    lines = stream.getvalue().splitlines()
    assert lines[0] == "1..1"
    assert lines[1] == f"# {tmp_path / 'absent.toml'}"
    assert lines[2].startswith("# load error: ")
    assert lines[-1] == "ok 1 - Command 'true' executes"


@pytest.mark.unit
async def test_document_errors_do_not_stop_other_documents(
    write_document, fake_executor, tmp_path
) -> None:
    fake_executor.respond("true")
    good = write_document("good.toml", '[[cmd]]\nshell = "true"\n')
    stream = io.StringIO()

    outcome = await _session(
        [str(tmp_path / "absent.toml"), str(good)], fake_executor, JsonLinesReporter(stream)
    ).run()

    assert outcome.documents_errored
    assert not outcome.checks_failed
    assert '"load-error"' in stream.getvalue()
    assert '"pass-count":1' in stream.getvalue()


@pytest.mark.unit
async def test_read_errors_count_in_the_round_stats(write_document, fake_executor) -> None:
    fake_executor.respond("true")
    path = write_document("mixed.toml", '[[cmd]]\nshell = "true"\n\n[[cmd]]\nbogus = 1\n')

    outcome = await _session([str(path)], fake_executor, JsonLinesReporter(io.StringIO())).run()

    assert outcome.documents_errored
    assert outcome.summaries[0].stats.err_count == 2


@pytest.mark.unit
async def test_check_directory_mode_runs_in_the_document_folder(
    write_document, fake_executor
) -> None:
    path = write_document("sub/checks.toml", '[[cmd]]\nshell = "pwd"\n')

    await _session(
        [str(path)], fake_executor, TapReporter(io.StringIO()), directory="check"
    ).run()

    assert fake_executor.calls[0].cwd == str(path.parent.resolve())


@pytest.mark.unit
async def test_analysis_follows_a_failing_round(write_document, fake_executor) -> None:
    path = write_document(
        "fs.toml",
        '[[fs]]\npath = "/definitely/not/here"\n\n[[hash]]\npath = "/definitely/not/here"\n'
        'algorithm = "MD5"\nhash = "00"\n',
    )
    stream = io.StringIO()

    await _session([str(path)], fake_executor, TapReporter(stream), analysis=True).run()

    assert "# - Failures involving path '/definitely/not/here' (×2, with 0 successes)" in (
        stream.getvalue().splitlines()
    )


@pytest.mark.unit
async def test_continual_mode_refuses_to_start_with_document_errors(
    write_document, fake_executor
) -> None:
    path = write_document("bad.toml", '[[cmd]]\nshell = ""\n')

    outcome = await _session(
        [str(path)],
        fake_executor,
        TapReporter(io.StringIO()),
        scheduler=SchedulerConfig(continual=True),
    ).run()

    assert outcome.documents_errored
    assert outcome.summaries == []
    assert fake_executor.calls == []


@pytest.mark.unit
async def test_continual_mode_stops_when_cancelled(write_document, fake_executor) -> None:
    fake_executor.respond("true")
    path = write_document("loop.toml", '[[cmd]]\nshell = "true"\n')
    stream = io.StringIO()
    token = CancellationToken()

    class _StopAfterTwoRounds(TapReporter):
        def round_finished(self, summary) -> None:
            super().round_finished(summary)
            if summary.round_number == 2:
                token.cancel("interrupted")

    session = RunSession(
        RunOptions(
            inputs=(str(path),),
            scheduler=SchedulerConfig(continual=True, delay_seconds=0.01),
        ),
        loader=DocumentLoader(),
        reporter=_StopAfterTwoRounds(stream),
        executor=fake_executor,
        cancel_token=token,
    )
    outcome = await session.run()

    assert outcome.interrupted
    assert len(outcome.summaries) == 1
    assert outcome.summaries[0].round_number == 2
    assert stream.getvalue().count("1..1") == 2
