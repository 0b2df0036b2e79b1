import pytest

from app.clients.solana_client import ChainRpcError, SolanaRpcClient, TransferState

TREASURY = "Treasury1111111111111111111111111111111111"


class StubResponse:
    def __init__(self, payload):
        self.payload = payload

    def raise_for_status(self):
        return None

    def json(self):
        return self.payload


class StubSession:
    """Answers JSON-RPC calls from a {method: result} table."""

    def __init__(self, results):
        self.results = results
        self.methods = []

    def post(self, url, json, timeout, headers):
        self.methods.append(json["method"])
        result = self.results[json["method"]]
        if isinstance(result, dict) and "error" in result:
            return StubResponse({"jsonrpc": "2.0", "id": 1, "error": result["error"]})
        return StubResponse({"jsonrpc": "2.0", "id": 1, "result": result})


def _client(results):
    session = StubSession(results)
    return SolanaRpcClient("http://rpc.test", TREASURY, session=session), session


def _statuses(status):
    return {"context": {"slot": 1}, "value": [status]}


@pytest.mark.parametrize(
    "status, expected",
    [
        ({"confirmationStatus": "finalized", "err": None}, TransferState.confirmed),
        ({"confirmationStatus": "confirmed", "err": None}, TransferState.confirmed),
        ({"confirmationStatus": "processed", "err": None}, TransferState.pending),
        ({"confirmationStatus": "confirmed", "err": {"InstructionError": [0, "Custom"]}}, TransferState.failed),
    ],
)
def test_transfer_state_from_signature_status(status, expected):
    client, session = _client({"getSignatureStatuses": _statuses(status)})

    assert client.transfer_state("sig", 500) == expected
    assert session.methods == ["getSignatureStatuses"]


def test_unseen_signature_is_pending_until_blockhash_expires():
    client, _ = _client({"getSignatureStatuses": _statuses(None), "getBlockHeight": 400})
    assert client.transfer_state("sig", 500) == TransferState.pending

    client, _ = _client({"getSignatureStatuses": _statuses(None), "getBlockHeight": 501})
    assert client.transfer_state("sig", 500) == TransferState.expired


def test_unseen_signature_without_height_stays_pending():
    client, session = _client({"getSignatureStatuses": _statuses(None)})

    assert client.transfer_state("sig") == TransferState.pending
    assert "getBlockHeight" not in session.methods


def test_await_transfer_gives_up_as_pending():
    client, session = _client({"getSignatureStatuses": _statuses(None), "getBlockHeight": 10})

    assert client.await_transfer("sig", 500, attempts=3, delay=0) == TransferState.pending
    assert session.methods.count("getSignatureStatuses") == 3


def test_prepare_without_keypair_is_refused():
    client, _ = _client({})

    with pytest.raises(ChainRpcError):
        client.prepare_transfer("Payer11111111111111111111111111111111111111", 1000)


def test_rpc_error_is_raised():
    client, _ = _client({"getSignatureStatuses": {"error": {"code": -32005, "message": "node is behind"}}})

    with pytest.raises(ChainRpcError, match="node is behind"):
        client.transfer_state("sig", 500)
