import pytest
import requests
from unittest.mock import MagicMock
from docker.constants import DEFAULT_DOCKER_API_VERSION

from enginectl.errors import TransportError
from enginectl.transport import Transport, _encode_params

ENDPOINT = "http://engine:2375"


@pytest.fixture
def api_client_cls(mocker):
    cls = mocker.patch("enginectl.transport.docker.APIClient")
    cls.return_value.base_url = ENDPOINT
    return cls


@pytest.fixture
def session(api_client_cls):
    return api_client_cls.return_value


def test_session_is_bound_to_endpoint(api_client_cls):
    Transport(ENDPOINT)
    api_client_cls.assert_called_once_with(
        base_url=ENDPOINT, version=DEFAULT_DOCKER_API_VERSION, timeout=None
    )


def test_request_returns_status_and_body(session):
    response = MagicMock(status_code=404, content=b'{"message":"No such container: x"}')
    session.request.return_value = response

    status, body = Transport(ENDPOINT).request("GET", "/containers/x/json")

    assert status == 404
    assert body == b'{"message":"No such container: x"}'
    args, kwargs = session.request.call_args
    assert args == ("GET", f"{ENDPOINT}/containers/x/json")
    assert kwargs["stream"] is False
    assert kwargs["data"] is None
    response.close.assert_called_once()


def test_json_body_is_serialized(session):
    session.request.return_value = MagicMock(status_code=201, content=b'{}')

    Transport(ENDPOINT).request("POST", "/networks/create", body={"Name": "n1"})

    kwargs = session.request.call_args.kwargs
    assert kwargs["data"] == b'{"Name": "n1"}'
    assert kwargs["headers"]["Content-Type"] == "application/json"


def test_bytes_body_and_header_override(session):
    session.request.return_value = MagicMock(status_code=200, content=b'')

    Transport(ENDPOINT).request("POST", "/build", body=b"tar",
                                headers={"Content-Type": "application/x-tar"})

    kwargs = session.request.call_args.kwargs
    assert kwargs["data"] == b"tar"
    assert kwargs["headers"]["Content-Type"] == "application/x-tar"


def test_connection_failure_is_transport_error(session):
    session.request.side_effect = requests.exceptions.ConnectionError("refused")

    with pytest.raises(TransportError) as exc:
        Transport(ENDPOINT).request("GET", "/version")

    assert isinstance(exc.value.cause, requests.exceptions.ConnectionError)
    assert ENDPOINT in str(exc.value)


def test_timeout_is_transport_error(session):
    session.request.side_effect = requests.exceptions.Timeout("slow")

    with pytest.raises(TransportError):
        Transport(ENDPOINT, timeout=1.0).request("GET", "/version")
    assert session.request.call_args.kwargs["timeout"] == 1.0


def test_stream_yields_chunks_and_closes(session):
    response = MagicMock(status_code=200)
    response.iter_content.return_value = iter([b"ab", b"", b"c"])
    session.request.return_value = response

    status, chunks = Transport(ENDPOINT).stream("GET", "/containers/x/logs", params={"tail": 5})

    assert status == 200
    assert list(chunks) == [b"ab", b"c"]
    response.close.assert_called_once()
    assert session.request.call_args.kwargs["stream"] is True
    assert session.request.call_args.kwargs["params"] == {"tail": "5"}


def test_encode_params():
    encoded = _encode_params({"all": True, "force": False, "tail": None,
                              "filters": {"label": ["a"]}, "n": 5})
    assert encoded == {"all": "true", "force": "false",
                       "filters": '{"label": ["a"]}', "n": "5"}
    assert _encode_params(None) is None
