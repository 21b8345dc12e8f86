"""
Contract ABIs for the three deployed contracts.

Only the functions this service calls are listed.
"""

from .backend import ContractName


def _function(name, inputs, outputs=(), view=False):
    return {
        "type": "function",
        "name": name,
        "inputs": [{"name": n, "type": t} for n, t in inputs],
        "outputs": [{"name": "", "type": t} for t in outputs],
        "stateMutability": "view" if view else "nonpayable",
    }


CREDENTIAL_REGISTRY_ABI = [
    _function("habilitarVeterinario", [("vet", "address")]),
    _function("tieneCredencialValida", [("vet", "address")], ["bool"], view=True),
]

MEDICAL_LEDGER_ABI = [
    _function("agregarRegistroMedico", [("chipId", "uint256"), ("cid", "string"), ("nuevoEstado", "uint8")]),
    _function("obtenerHistorialMedico", [("chipId", "uint256")], ["string[]"], view=True),
    _function("obtenerEstadoSalud", [("chipId", "uint256")], ["uint8"], view=True),
    _function("authorizeVeterinarian", [("vetAddress", "address")]),
    _function("revokeVeterinarian", [("vetAddress", "address")]),
    _function("obtenerVeterinariosAutorizados", [("owner", "address")], ["address[]"], view=True),
    _function("isVetAuthorized", [("owner", "address"), ("vetAddress", "address")], ["bool"], view=True),
]

IDENTITY_REGISTRY_ABI = [
    _function("mint", [
        ("to", "address"), ("chipId", "uint256"), ("animalCid", "string"), ("firstReportCid", "string"),
    ]),
    _function("setOwnerEnabled", [("owner", "address"), ("enabled", "bool")]),
    _function("transferFrom", [("from", "address"), ("to", "address"), ("tokenId", "uint256")]),
    _function("balanceOf", [("owner", "address")], ["uint256"], view=True),
    _function("tokenOfOwnerByIndex", [("owner", "address"), ("index", "uint256")], ["uint256"], view=True),
    _function("tokenURI", [("tokenId", "uint256")], ["string"], view=True),
]

ABIS = {
    ContractName.CREDENTIAL_REGISTRY: CREDENTIAL_REGISTRY_ABI,
    ContractName.IDENTITY_REGISTRY: IDENTITY_REGISTRY_ABI,
    ContractName.MEDICAL_LEDGER: MEDICAL_LEDGER_ABI,
}
