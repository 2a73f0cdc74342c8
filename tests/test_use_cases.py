import asyncio

import httpx
import pytest

from rolescope.adapters.explorer_httpx import EtherscanExplorer
from rolescope.application.use_cases import (
    ADMIN_SLOT, IMPLEMENTATION_SLOT, Services, fetch_schema, find_creation_block, find_events, find_roles,
    get_proxy_admin, open_services, read_slot, resolve_block_span,
)
from rolescope.domain.errors import ExplorerError, SchemaMismatchError, TransportError
from rolescope.domain.models import BlockRange, TxInfo
from rolescope.domain.schema import EventSchema

from abis import ACCESS_CONTROL_ABI, TRANSFER_ABI
from fakes import CONTRACT, FakeRPC, Sleeps, executor, make_log, word

ALICE = "0x5aAeb6053F3E94C9b9A09f33669435E7Ef1BeAed"
BOB = "0xfB6916095ca1df60bB79Ce92cE3Ea74c37c5d359"
ADMIN = "0x" + "00" * 32
MINTER = "0x9f2df0fed2c77648de5860a4cc508cd0818c85b8b8a1ab4ceeef8d981c8956a6"
SCHEMA = EventSchema.from_abi(ACCESS_CONTROL_ABI)
GRANTED = SCHEMA.event("RoleGranted").topic0
REVOKED = SCHEMA.event("RoleRevoked").topic0


class FakeExplorer:
    def __init__(self, abi=None, creation=None, first=None):
        self.abi = abi
        self.creation = creation
        self.first = first
        self.calls = []
        self.closed = False

    async def get_abi(self, address):
        self.calls.append("getabi")
        if self.abi is None:
            raise ExplorerError("Contract source code not verified")
        return self.abi

    async def get_creation_tx(self, address):
        self.calls.append("getcontractcreation")
        if self.creation is None:
            raise ExplorerError("no creation record")
        return self.creation

    async def get_first_tx(self, address):
        self.calls.append("txlist")
        if self.first is None:
            raise ExplorerError("no transactions")
        return self.first

    async def aclose(self):
        self.closed = True


def _services(rpc, explorers=(), **kw):
    return Services(rpc=rpc, retry=executor(sleeps=Sleeps()), explorers=list(explorers), **kw)


def _role_log(topic0, block, index, role, account, tx):
    return make_log(block, index, [topic0, role, word(account), word(BOB)], tx=tx)


def _role_node(**kw):
    logs = [
        _role_log(GRANTED, 100, 0, MINTER, ALICE, "0x01"),
        _role_log(GRANTED, 1500, 1, ADMIN, BOB, "0x02"),
        _role_log(REVOKED, 2100, 0, MINTER, ALICE, "0x03"),
        _role_log(GRANTED, 2400, 3, MINTER, ALICE, "0x04"),
        _role_log(GRANTED, 2400, 4, MINTER, BOB, "0x05"),
    ]
    txs = {l.tx_hash: TxInfo(hash=l.tx_hash, sender=BOB.lower()) for l in logs}
    blocks = {l.block_number: 1_700_000_000 + l.block_number for l in logs}
    return FakeRPC(logs=logs, txs=txs, blocks=blocks, **kw)


def test_find_roles_end_to_end():
    rpc = _role_node()
    res = asyncio.run(find_roles(_services(rpc), CONTRACT, BlockRange(0, 2500), SCHEMA))
    assert res.to_output() == {
        "contractAddress": CONTRACT,
        "roles": {"MINTER_ROLE": [ALICE, BOB], "DEFAULT_ADMIN_ROLE": [BOB]},
    }
    assert res.complete
    assert res.describe() == "complete result"
    assert res.grants.report.total_chunks == 3
    assert len(res.grants.records) == 4 and len(res.revokes.records) == 1


def test_find_roles_reports_partial_result():
    rpc = _role_node(fail=lambda fb, tb, _: TransportError("boom") if fb == 1000 else None)
    res = asyncio.run(find_roles(_services(rpc), CONTRACT, BlockRange(0, 2500), SCHEMA))
    assert not res.complete
    assert res.describe() == "result based on 4/6 successful chunks"
    # the ADMIN grant lived in the failed chunk
    assert "DEFAULT_ADMIN_ROLE" not in res.to_output()["roles"]


def test_find_roles_requires_access_control_events():
    schema = EventSchema.from_abi(TRANSFER_ABI)
    with pytest.raises(SchemaMismatchError, match="AccessControl"):
        asyncio.run(find_roles(_services(FakeRPC()), CONTRACT, BlockRange(0, 10), schema))


def test_find_events_counts_missing_context():
    rpc = _role_node()
    del rpc.txs["0x04"]
    res = asyncio.run(find_events(_services(rpc), CONTRACT, "RoleGranted", BlockRange(0, 2500), SCHEMA))
    assert res.missing_context == 1
    assert [r.block_number for r in res.records] == [100, 1500, 2400]
    assert res.records[0].timestamp == "2023-11-14T22:15:00.000Z"
    assert res.records[0].sender_address == BOB


def test_find_events_unknown_event():
    with pytest.raises(SchemaMismatchError, match="Event Approval not found"):
        asyncio.run(find_events(_services(FakeRPC()), CONTRACT, "Approval", BlockRange(0, 10), SCHEMA))


def test_fetch_schema_falls_through_explorers():
    first, second = FakeExplorer(), FakeExplorer(abi=ACCESS_CONTROL_ABI)
    schema = asyncio.run(fetch_schema(_services(FakeRPC(), [("v2", first), ("legacy", second)]), CONTRACT))
    assert schema.has_event("RoleGranted")
    # each explorer call gets one retry
    assert first.calls == ["getabi", "getabi"]


def test_fetch_schema_without_explorers():
    with pytest.raises(ExplorerError):
        asyncio.run(fetch_schema(_services(FakeRPC()), CONTRACT))


def test_creation_block_from_explorer():
    rpc = FakeRPC(txs={"0xdead": TxInfo(hash="0xdead", sender=ALICE.lower(), block_number=1234)})
    info = asyncio.run(find_creation_block(_services(rpc, [("v2", FakeExplorer(creation="0xdead"))]), CONTRACT))
    assert (info.block_number, info.tx_hash, info.creator) == (1234, "0xdead", ALICE)


def test_creation_block_first_tx_heuristic():
    rpc = FakeRPC(txs={"0xbeef": TxInfo(hash="0xbeef", sender=ALICE, block_number=77)})
    explorer = FakeExplorer(first="0xbeef")
    info = asyncio.run(find_creation_block(_services(rpc, [("v2", explorer)]), CONTRACT))
    assert info.block_number == 77
    assert explorer.calls[-1] == "txlist"


def test_creation_block_defaults_to_genesis():
    assert asyncio.run(find_creation_block(_services(FakeRPC()), CONTRACT)).block_number == 0


def test_block_span_explicit_values():
    span = asyncio.run(resolve_block_span(_services(FakeRPC()), CONTRACT, "0x10", "200"))
    assert span == BlockRange(16, 200)


def test_block_span_defaults():
    rpc = FakeRPC(
        txs={"0xdead": TxInfo(hash="0xdead", sender=ALICE, block_number=1234)},
        tags={"finalized": 5000, "latest": 5010},
    )
    services = _services(rpc, [("v2", FakeExplorer(creation="0xdead"))])
    assert asyncio.run(resolve_block_span(services, CONTRACT)) == BlockRange(1234, 5000)


def test_block_span_falls_back_to_block_number():
    rpc = FakeRPC(tags={"finalized": None}, latest=999)
    assert asyncio.run(resolve_block_span(_services(rpc), CONTRACT, "5")) == BlockRange(5, 999)


def test_block_span_rejects_inverted():
    with pytest.raises(ValueError):
        asyncio.run(resolve_block_span(_services(FakeRPC()), CONTRACT, "300", "200"))


def test_read_slot():
    rpc = FakeRPC(storage={"0x0": word(ALICE)})
    res = asyncio.run(read_slot(_services(rpc), CONTRACT, "0"))
    assert res["slot"] == "0x0"
    assert res["interpretations"]["asAddress"] == ALICE.lower()
    assert res["interpretations"]["asDecimal"] == str(int(ALICE, 16))
    with pytest.raises(ValueError, match="Invalid slot format"):
        asyncio.run(read_slot(_services(rpc), CONTRACT, "zz"))


def test_get_proxy_admin():
    rpc = FakeRPC(storage={ADMIN_SLOT: word(ALICE), IMPLEMENTATION_SLOT: word(BOB)})
    assert asyncio.run(get_proxy_admin(_services(rpc), CONTRACT)) == {
        "proxyAddress": CONTRACT,
        "adminAddress": ALICE,
        "implementationAddress": BOB,
    }
    assert asyncio.run(get_proxy_admin(_services(FakeRPC()), CONTRACT)) is None


def test_open_services_closes_everything():
    rpc = FakeRPC()
    explorer = FakeExplorer()

    async def run():
        async with open_services(rpc, executor(), explorers=[("v2", explorer)]) as services:
            assert services.concurrency == 8

    asyncio.run(run())
    assert explorer.closed and rpc.stats["closed"] == 1


def test_find_events_survives_failed_tx_lookup():
    rpc = _role_node()
    get_transaction = rpc.get_transaction

    async def flaky(tx_hash):
        if tx_hash == "0x02":
            raise TransportError("boom")
        return await get_transaction(tx_hash)

    rpc.get_transaction = flaky
    res = asyncio.run(find_events(_services(rpc), CONTRACT, "RoleGranted", BlockRange(0, 2500), SCHEMA))
    assert res.missing_context == 1
    assert [r.transaction_hash for r in res.records] == ["0x01", "0x04", "0x05"]


def test_creation_block_survives_html_explorer_response():
    explorer = EtherscanExplorer(
        "https://api.test/v2/api",
        transport=httpx.MockTransport(lambda request: httpx.Response(200, text="<html>cf</html>")),
    )

    async def run():
        try:
            return await find_creation_block(_services(FakeRPC(), [("v2", explorer)]), CONTRACT)
        finally:
            await explorer.aclose()

    assert asyncio.run(run()).block_number == 0
