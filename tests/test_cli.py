import pytest
from click.testing import CliRunner
from unittest.mock import MagicMock

from enginectl.cli import main, render_snapshot, render_engine, _watch
from enginectl.model import (
    ActionResult, ContainerRecord, EngineStatus, LogLine, NetworkRecord, ResourceSnapshot,
    CONTAINERS, NETWORKS,
)


@pytest.fixture
def session(mocker):
    mocker.patch("enginectl.cli.setup_logging")
    s = MagicMock()
    s.reconciler.state.get_error.return_value = None
    mocker.patch("enginectl.cli.Session", return_value=s)
    return s


def run(*args, **kwargs):
    return CliRunner().invoke(main, list(args), **kwargs)


def test_ps(session):
    session.reconciler.snapshot.return_value = ResourceSnapshot(
        CONTAINERS, [ContainerRecord("0123456789abcdef", ["/web-1"], "nginx", "running", "Up")]
    )

    result = run("ps")

    assert result.exit_code == 0
    assert "web-1" in result.output
    assert "0123456789ab" in result.output
    session.reconciler.refresh.assert_called_once_with(CONTAINERS)
    session.close.assert_called_once()


def test_networks_marks_builtin(session):
    session.reconciler.snapshot.return_value = ResourceSnapshot(
        NETWORKS, [NetworkRecord("n1", "bridge", "bridge", "local")]
    )

    result = run("networks")

    assert result.exit_code == 0
    assert "builtin" in result.output


def test_info_offline(session):
    from enginectl.errors import TransportError
    session.client.version.side_effect = TransportError("refused")

    result = run("info")

    assert result.exit_code == 0
    assert "offline" in result.output


def test_logs(session):
    session.config.logs.tail = 200
    session.client.iter_container_logs.return_value = [LogLine("stdout", "hello"), LogLine("stderr", "bye")]

    result = run("logs", "abc")

    assert result.exit_code == 0
    assert "hello" in result.output
    assert "bye" in result.output
    assert session.client.iter_container_logs.call_args.kwargs["tail"] == 200


def test_start_success(session):
    session.dispatcher.start_container.return_value = ActionResult(True, "Started abc")

    result = run("start", "abc")

    assert result.exit_code == 0
    assert "Started abc" in result.output


def test_stop_failure_exits_nonzero(session):
    session.dispatcher.stop_container.return_value = ActionResult(False, "Stop container failed: boom")

    result = run("stop", "abc")

    assert result.exit_code == 1
    assert "boom" in result.output


def test_rm_asks_for_confirmation(session):
    session.dispatcher.delete_container.return_value = ActionResult(True, "Deleted abc")

    declined = run("rm", "abc", input="n\n")
    assert declined.exit_code != 0
    session.dispatcher.delete_container.assert_not_called()

    accepted = run("rm", "-f", "abc", input="y\n")
    assert accepted.exit_code == 0
    session.dispatcher.delete_container.assert_called_once_with("abc", force=True)


def test_pull_prints_progress(session):
    session.dispatcher.pull_image.return_value = ActionResult(True, "Pulled nginx:latest", ["Downloading"])

    result = run("pull", "nginx")

    assert result.exit_code == 0
    assert "Downloading" in result.output
    session.dispatcher.pull_image.assert_called_once_with("nginx")


def test_render_snapshot_error_caption():
    table = render_snapshot(ResourceSnapshot(CONTAINERS, []), error=RuntimeError("down"))
    assert "down" in table.caption


def test_render_engine_online():
    table = render_engine(EngineStatus(online=True, version="0.1.0"))
    assert table.row_count >= 9


def test_watch_redraws_only_when_store_changes(mocker):
    mocker.patch("enginectl.cli.time.sleep", side_effect=[None, None, KeyboardInterrupt])
    state = MagicMock()
    state.get_version.side_effect = [1, 1, 2]
    redraw = MagicMock()
    subscription = MagicMock()

    _watch(subscription, state, redraw)

    assert redraw.call_count == 2
    subscription.close.assert_called_once()


def test_watch_closes_subscription_without_store(mocker):
    mocker.patch("enginectl.cli.time.sleep", side_effect=KeyboardInterrupt)
    subscription = MagicMock()

    _watch(subscription)

    subscription.close.assert_called_once()
