ACCESS_CONTROL_ABI = [
    {
        "type": "event", "name": "RoleGranted", "anonymous": False,
        "inputs": [
            {"name": "role", "type": "bytes32", "indexed": True},
            {"name": "account", "type": "address", "indexed": True},
            {"name": "sender", "type": "address", "indexed": True},
        ],
    },
    {
        "type": "event", "name": "RoleRevoked", "anonymous": False,
        "inputs": [
            {"name": "role", "type": "bytes32", "indexed": True},
            {"name": "account", "type": "address", "indexed": True},
            {"name": "sender", "type": "address", "indexed": True},
        ],
    },
    {
        "type": "function", "name": "hasRole", "stateMutability": "view",
        "inputs": [{"name": "role", "type": "bytes32"}, {"name": "account", "type": "address"}],
        "outputs": [{"name": "", "type": "bool"}],
    },
]

TRANSFER_ABI = [
    {
        "type": "event", "name": "Transfer", "anonymous": False,
        "inputs": [
            {"name": "from", "type": "address", "indexed": True},
            {"name": "to", "type": "address", "indexed": True},
            {"name": "value", "type": "uint256", "indexed": False},
        ],
    },
]

MIXED_ABI = [
    {
        "type": "event", "name": "Configured", "anonymous": False,
        "inputs": [
            {"name": "label", "type": "string", "indexed": True},
            {"name": "enabled", "type": "bool", "indexed": False},
            {"name": "note", "type": "string", "indexed": False},
            {"name": "members", "type": "address[]", "indexed": False},
            {"name": "salt", "type": "bytes32", "indexed": False},
        ],
    },
    {
        "type": "event", "name": "Unnamed", "anonymous": False,
        "inputs": [
            {"name": "", "type": "uint256", "indexed": False},
            {"name": "who", "type": "address", "indexed": False},
        ],
    },
]
