from rolescope.domain.models import EventRecord
from rolescope.domain.roles import KNOWN_ROLES, reconstruct, role_label, to_output

ADMIN = "0x" + "00" * 32
MINTER = "0x9f2df0fed2c77648de5860a4cc508cd0818c85b8b8a1ab4ceeef8d981c8956a6"
ALICE = "0x5aAeb6053F3E94C9b9A09f33669435E7Ef1BeAed"
BOB = "0xfB6916095ca1df60bB79Ce92cE3Ea74c37c5d359"


def ev(name, block, index, role=MINTER, account=ALICE, **extra):
    params = {"sender": BOB, **extra}
    if role is not None:
        params["role"] = role
    if account is not None:
        params["account"] = account
    return EventRecord(
        transaction_hash=f"0x{block:x}{index:x}", event_name=name, block_number=block, log_index=index,
        timestamp="1970-01-01T00:00:00.000Z", sender_address=BOB, parameters=params,
    )


def grant(block, index, **kw):
    return ev("RoleGranted", block, index, **kw)


def revoke(block, index, **kw):
    return ev("RoleRevoked", block, index, **kw)


def test_grant_revoke_grant_holds():
    state = reconstruct([grant(10, 0), grant(30, 0)], [revoke(20, 0)])
    assert state.holders == {MINTER: (ALICE,)}


def test_grant_then_revoke_drops_role():
    state = reconstruct([grant(10, 0)], [revoke(20, 0)])
    assert state.holders == {}


def test_revoke_without_grant_is_noop():
    state = reconstruct([grant(5, 0, account=BOB)], [revoke(1, 0)])
    assert state.holders == {MINTER: (BOB,)}


def test_order_within_block_follows_log_index():
    assert reconstruct([grant(10, 2)], [revoke(10, 1)]).holders == {MINTER: (ALICE,)}
    assert reconstruct([grant(10, 1)], [revoke(10, 2)]).holders == {}


def test_input_order_does_not_matter():
    grants = [grant(30, 0), grant(10, 0)]
    revokes = [revoke(20, 0)]
    assert reconstruct(grants, revokes) == reconstruct(list(reversed(grants)), revokes)


def test_duplicate_grants_are_idempotent():
    state = reconstruct([grant(1, 0), grant(2, 0), grant(3, 0)], [])
    assert state.holders == {MINTER: (ALICE,)}
    assert reconstruct([grant(1, 0)], []) == reconstruct([grant(1, 0)], [])


def test_holders_keep_first_grant_order():
    state = reconstruct([grant(5, 0, account=BOB), grant(7, 0, account=ALICE), grant(9, 0, account=BOB)], [])
    assert state.holders[MINTER] == (BOB, ALICE)


def test_events_missing_fields_are_skipped():
    state = reconstruct([grant(1, 0, role=None), grant(2, 0, account=None), grant(3, 0)], [revoke(4, 0, account=None)])
    assert state.skipped_events == 3
    assert state.holders == {MINTER: (ALICE,)}


def test_access_manager_role_id_is_accepted():
    e = ev("RoleGranted", 1, 0, role=None, roleId="42")
    assert reconstruct([e], []).holders == {"42": (ALICE,)}


def test_output_document_uses_role_labels():
    state = reconstruct([grant(1, 0, role=ADMIN), grant(2, 0, account=BOB), grant(3, 0, role="0x" + "ee" * 32)], [])
    assert to_output("0xC0ffee254729296a45a3885639AC7E10F9d54979", state) == {
        "contractAddress": "0xC0ffee254729296a45a3885639AC7E10F9d54979",
        "roles": {
            "DEFAULT_ADMIN_ROLE": [ALICE],
            "MINTER_ROLE": [BOB],
            "0x" + "ee" * 32: [ALICE],
        },
    }


def test_role_labels():
    assert role_label(MINTER) == "MINTER_ROLE"
    assert role_label(MINTER.upper().replace("0X", "0x")) == "MINTER_ROLE"
    assert role_label("0") == "ADMIN_ROLE"
    assert role_label("18446744073709551615") == "PUBLIC_ROLE"
    assert set(KNOWN_ROLES.values()) == {"DEFAULT_ADMIN_ROLE", "PAUSER_ROLE", "MINTER_ROLE", "UPGRADER_ROLE"}
