"""Point-in-time role membership from RoleGranted / RoleRevoked events.

Grants and revokes are merged into one stream ordered by (block, logIndex)
and folded left to right, so a grant -> revoke -> grant history ends with
the account holding the role.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Iterable, Mapping

from .models import EventRecord, RoleAssignmentState
from .value_types import Address, RoleEventKind, RoleId

logger = logging.getLogger(__name__)

GRANTED: RoleEventKind = "RoleGranted"
REVOKED: RoleEventKind = "RoleRevoked"

# OpenZeppelin AccessControl well-known role ids
KNOWN_ROLES: dict[str, str] = {
    "0x0000000000000000000000000000000000000000000000000000000000000000": "DEFAULT_ADMIN_ROLE",
    "0x65d7a28e3265b37a6474929f336521b332c1681b933f6cb9f3376673440d862a": "PAUSER_ROLE",
    "0x9f2df0fed2c77648de5860a4cc508cd0818c85b8b8a1ab4ceeef8d981c8956a6": "MINTER_ROLE",
    "0xd83740310a408b03a53117fdd07e226c91fa1daa4d57713b36cc45eccac04b43": "UPGRADER_ROLE",
}

# AccessManager built-ins (uint64 role ids)
ACCESS_MANAGER_ROLES: dict[str, str] = {
    "0": "ADMIN_ROLE",
    "18446744073709551615": "PUBLIC_ROLE",
}


@dataclass(slots=True, frozen=True)
class _Step:
    block_number: int
    log_index: int
    grant: bool
    role: RoleId
    account: Address


def _role_of(params: Mapping[str, str]) -> str | None:
    # AccessControl emits `role`, AccessManager emits `roleId`
    return params.get("role") or params.get("roleId")


def _steps(events: Iterable[EventRecord], grant: bool) -> tuple[list[_Step], int]:
    out: list[_Step] = []
    skipped = 0
    for ev in events:
        role = _role_of(ev.parameters)
        account = ev.parameters.get("account")
        if not role or not account:
            skipped += 1
            logger.warning(
                "Missing role identifier or account in %s event (tx %s, log %d); skipping",
                ev.event_name, ev.transaction_hash, ev.log_index,
            )
            continue
        out.append(_Step(ev.block_number, ev.log_index, grant, RoleId(role), Address(account)))
    return out, skipped


def reconstruct(grant_events: Iterable[EventRecord], revoke_events: Iterable[EventRecord]) -> RoleAssignmentState:
    grants, skipped_g = _steps(grant_events, grant=True)
    revokes, skipped_r = _steps(revoke_events, grant=False)

    # stable sort: equal keys keep grant-before-revoke input order
    stream = sorted(grants + revokes, key=lambda s: (s.block_number, s.log_index))

    holds: dict[RoleId, dict[Address, bool]] = {}
    for step in stream:
        holds.setdefault(step.role, {})[step.account] = step.grant

    holders: dict[RoleId, list[Address]] = {}
    for role, accounts in holds.items():
        current = [acct for acct, flag in accounts.items() if flag]
        if current:
            holders[role] = current
    return RoleAssignmentState.build(holders, skipped_events=skipped_g + skipped_r)


def role_label(role: RoleId) -> str:
    return KNOWN_ROLES.get(role.lower()) or ACCESS_MANAGER_ROLES.get(role) or role


def to_output(contract_address: str, state: RoleAssignmentState) -> dict[str, object]:
    """`{contractAddress, roles: {<name or id>: [holder, ...]}}`, holders in first-grant order."""
    roles: dict[str, list[str]] = {}
    for role, accounts in state.holders.items():
        roles[role_label(role)] = list(accounts)
    return {"contractAddress": contract_address, "roles": roles}
