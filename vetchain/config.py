"""
Configuration

Handles network identity, contract addresses, and content store settings.

Environment Variables:
    VETCHAIN_CHAIN_ID: Required network id, decimal (default 11155111, Sepolia)
    VETCHAIN_CHAIN_NAME: Display name used when adding the network
    VETCHAIN_RPC_URL: RPC endpoint offered when adding the network, and the
        node the rpc ledger driver talks to
    VETCHAIN_EXPLORER_URL: Block explorer URL used when adding the network

    VETCHAIN_CREDENTIAL_REGISTRY: Authority Registry contract address
    VETCHAIN_IDENTITY_REGISTRY: Identity Registry contract address
    VETCHAIN_MEDICAL_LEDGER: Medical Ledger contract address

    VETCHAIN_IPFS_GATEWAY: Gateway base URL for CID fetches
    VETCHAIN_PINNING_API_URL: Pinning service base URL
    VETCHAIN_PINNING_JWT: Bearer token for the pinning service
    VETCHAIN_HTTP_TIMEOUT: Transport timeout in seconds (default 30.0)

    VETCHAIN_CONTENT_STORE: Which content store driver to use
        - "memory" (default if no pinning JWT is configured)
        - "http" (pinning service + public gateway)

    VETCHAIN_LEDGER: Which ledger driver to use
        - "memory" (default if no RPC URL is configured)
        - "rpc" (JSON-RPC node at VETCHAIN_RPC_URL)
    VETCHAIN_SIGNER_KEY: Private key that signs writes locally (rpc driver);
        without it the node must manage the account
    VETCHAIN_RECEIPT_TIMEOUT: Seconds to wait for finality (default 120)
    VETCHAIN_POLL_LATENCY: Seconds between receipt polls (default 2.0)

    VETCHAIN_VERIFY_CREDENTIALS: Check the acting vet's credential before
        mint/append (default 1)
"""

import os
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional


# Bump whenever the add-network payload below changes
NETWORK_CONFIG_VERSION = 1

SEPOLIA_CHAIN_ID = 11155111

CONTENT_URI_SCHEME = "ipfs://"


class ContentStoreDriver(str, Enum):
    """Supported content store drivers."""
    MEMORY = "memory"
    HTTP = "http"


class LedgerDriver(str, Enum):
    """Supported ledger drivers."""
    MEMORY = "memory"
    RPC = "rpc"


@dataclass(frozen=True)
class NativeCurrency:
    name: str = "Sepolia ETH"
    symbol: str = "SEP"
    decimals: int = 18


@dataclass(frozen=True)
class NetworkConfig:
    """
    The single ledger network this deployment talks to.

    Also the fixed payload offered to the signer when the network is
    unknown to it (wallet_addEthereumChain).
    """
    chain_id: int = SEPOLIA_CHAIN_ID
    chain_name: str = "Sepolia Testnet"
    native_currency: NativeCurrency = field(default_factory=NativeCurrency)
    rpc_url: str = "https://sepolia.infura.io/v3/"
    explorer_url: str = "https://sepolia.etherscan.io"
    version: int = NETWORK_CONFIG_VERSION

    @property
    def chain_id_hex(self) -> str:
        """Chain id as the 0x-prefixed hex string signers expect."""
        return hex(self.chain_id)

    def to_add_chain_params(self) -> dict:
        """Parameters for wallet_addEthereumChain."""
        return {
            "chainId": self.chain_id_hex,
            "chainName": self.chain_name,
            "nativeCurrency": {
                "name": self.native_currency.name,
                "symbol": self.native_currency.symbol,
                "decimals": self.native_currency.decimals,
            },
            "rpcUrls": [self.rpc_url],
            "blockExplorerUrls": [self.explorer_url],
        }

    @classmethod
    def from_env(cls) -> "NetworkConfig":
        return cls(
            chain_id=int(os.getenv("VETCHAIN_CHAIN_ID", str(SEPOLIA_CHAIN_ID))),
            chain_name=os.getenv("VETCHAIN_CHAIN_NAME", "Sepolia Testnet"),
            rpc_url=os.getenv("VETCHAIN_RPC_URL", "https://sepolia.infura.io/v3/"),
            explorer_url=os.getenv("VETCHAIN_EXPLORER_URL", "https://sepolia.etherscan.io"),
        )


@dataclass(frozen=True)
class ContractAddresses:
    """Deployed addresses of the three logical contracts."""
    credential_registry: str = "0xD9E0Bb2Cd4f52d1393A6165bAb9122C4F0B5DA30"
    identity_registry: str = "0x2ee6AB35f7E07C230c9ec5B770e969EFAcf6B6f9"
    medical_ledger: str = "0x7f677dffa0628058909e0d72f5C39b4cdc3Bdb31"

    @classmethod
    def from_env(cls) -> "ContractAddresses":
        defaults = cls()
        return cls(
            credential_registry=os.getenv("VETCHAIN_CREDENTIAL_REGISTRY", defaults.credential_registry),
            identity_registry=os.getenv("VETCHAIN_IDENTITY_REGISTRY", defaults.identity_registry),
            medical_ledger=os.getenv("VETCHAIN_MEDICAL_LEDGER", defaults.medical_ledger),
        )


@dataclass(frozen=True)
class RpcConfig:
    """JSON-RPC ledger settings."""
    signer_key: str = field(default="", repr=False)
    receipt_timeout: float = 120.0
    poll_latency: float = 2.0

    @classmethod
    def from_env(cls) -> "RpcConfig":
        return cls(
            signer_key=os.getenv("VETCHAIN_SIGNER_KEY", ""),
            receipt_timeout=float(os.getenv("VETCHAIN_RECEIPT_TIMEOUT", "120")),
            poll_latency=float(os.getenv("VETCHAIN_POLL_LATENCY", "2.0")),
        )


@dataclass(frozen=True)
class ContentStoreConfig:
    """Content store connection settings."""
    gateway_url: str = "https://ipfs.io/ipfs/"
    pinning_api_url: str = "https://api.pinata.cloud"
    pinning_jwt: str = ""
    timeout: float = 30.0

    @classmethod
    def from_env(cls) -> "ContentStoreConfig":
        return cls(
            gateway_url=os.getenv("VETCHAIN_IPFS_GATEWAY", "https://ipfs.io/ipfs/"),
            pinning_api_url=os.getenv("VETCHAIN_PINNING_API_URL", "https://api.pinata.cloud"),
            pinning_jwt=os.getenv("VETCHAIN_PINNING_JWT", ""),
            timeout=float(os.getenv("VETCHAIN_HTTP_TIMEOUT", "30.0")),
        )

    def gateway_url_for(self, cid: str) -> str:
        """Concatenate the gateway base with a bare CID."""
        base = self.gateway_url if self.gateway_url.endswith("/") else self.gateway_url + "/"
        return f"{base}{cid}"


@dataclass(frozen=True)
class Settings:
    """Top-level settings bundle."""
    network: NetworkConfig = field(default_factory=NetworkConfig)
    contracts: ContractAddresses = field(default_factory=ContractAddresses)
    content_store: ContentStoreConfig = field(default_factory=ContentStoreConfig)
    rpc: RpcConfig = field(default_factory=RpcConfig)
    verify_credentials: bool = True

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            network=NetworkConfig.from_env(),
            contracts=ContractAddresses.from_env(),
            content_store=ContentStoreConfig.from_env(),
            rpc=RpcConfig.from_env(),
            verify_credentials=os.getenv("VETCHAIN_VERIFY_CREDENTIALS", "1").lower()
            in ("1", "true", "yes"),
        )


def get_content_store_driver() -> ContentStoreDriver:
    """
    Get the content store driver to use.

    Checks VETCHAIN_CONTENT_STORE, then falls back to:
    - http if a pinning JWT is configured
    - memory otherwise
    """
    explicit = os.getenv("VETCHAIN_CONTENT_STORE", "").lower()

    if explicit:
        if explicit == "memory":
            return ContentStoreDriver.MEMORY
        elif explicit == "http":
            return ContentStoreDriver.HTTP
        else:
            raise ValueError(
                f"Unknown VETCHAIN_CONTENT_STORE: {explicit}. "
                f"Valid values: memory, http"
            )

    if os.getenv("VETCHAIN_PINNING_JWT"):
        return ContentStoreDriver.HTTP

    return ContentStoreDriver.MEMORY


def get_ledger_driver() -> LedgerDriver:
    """
    Get the ledger driver to use.

    Checks VETCHAIN_LEDGER, then falls back to:
    - rpc if VETCHAIN_RPC_URL is set
    - memory otherwise
    """
    explicit = os.getenv("VETCHAIN_LEDGER", "").lower()

    if explicit:
        try:
            return LedgerDriver(explicit)
        except ValueError:
            raise ValueError(
                f"Unknown VETCHAIN_LEDGER: {explicit}. "
                f"Valid values: memory, rpc"
            )

    if os.getenv("VETCHAIN_RPC_URL"):
        return LedgerDriver.RPC

    return LedgerDriver.MEMORY


def cid_from_uri(uri: Optional[str]) -> str:
    """
    Strip the content URI scheme, returning the bare CID.

    Raises:
        ValueError: if the URI is empty or uses another scheme
    """
    if not uri or not uri.startswith(CONTENT_URI_SCHEME):
        raise ValueError(f"Not a content URI: {uri!r}")
    cid = uri[len(CONTENT_URI_SCHEME):].strip("/")
    if not cid:
        raise ValueError(f"Content URI has no CID: {uri!r}")
    return cid


def uri_for_cid(cid: str) -> str:
    return f"{CONTENT_URI_SCHEME}{cid}"
