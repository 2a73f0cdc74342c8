from __future__ import annotations
from typing import NewType, Literal

Address = NewType("Address", str)   # 0x-prefixed, lowercase
Topic0  = NewType("Topic0", str)    # 66-char 0x-hash
RoleId  = NewType("RoleId", str)    # 66-char 0x-hash (bytes32) or decimal uint64 (AccessManager)
Status  = Literal["pending", "done", "failed"]
FailureKind = Literal["timeout", "rate_limit", "other"]
RoleEventKind = Literal["RoleGranted", "RoleRevoked"]
