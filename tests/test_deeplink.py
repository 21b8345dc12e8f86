"""Tests for authorization deep links and QR rendering."""

import pytest

from conftest import VET
from vetchain.config import ContractAddresses, NetworkConfig, Settings
from vetchain.core import (
    AuthorizationLink,
    ValidationError,
    build_authorization_link,
    parse_authorization_link,
    render_qr_png,
)

MEDICAL_LEDGER = "0x7f677dffa0628058909e0d72f5C39b4cdc3Bdb31"


class TestAuthorizationLink:

    def test_default_deployment(self):
        uri = build_authorization_link(VET)
        assert uri == f"ethereum:{MEDICAL_LEDGER}@0xaa36a7/authorizeVeterinarian?param-0={VET}"

    def test_uses_configured_network_and_contract(self):
        settings = Settings(
            network=NetworkConfig(chain_id=31337),
            contracts=ContractAddresses(medical_ledger="0x" + "ab" * 20),
        )
        uri = build_authorization_link(VET, settings)
        assert uri.startswith("ethereum:0x" + "ab" * 20 + "@0x7a69/")

    def test_parse(self):
        link = parse_authorization_link(build_authorization_link(VET))

        assert link == AuthorizationLink(
            contract=MEDICAL_LEDGER,
            chain_id=11155111,
            function="authorizeVeterinarian",
            params=(VET,),
        )

    def test_parse_decimal_chain_and_ordered_params(self):
        link = parse_authorization_link(
            f"ethereum:{MEDICAL_LEDGER}@11155111/transferFrom?param-1=b&param-0=a"
        )
        assert link.chain_id == 11155111
        assert link.params == ("a", "b")

    @pytest.mark.parametrize("uri", [
        "",
        "https://example.com",
        f"ethereum:{MEDICAL_LEDGER}/authorizeVeterinarian",
        "ethereum:0x123@0xaa36a7/authorizeVeterinarian",
        f"ethereum:{MEDICAL_LEDGER}@0xaa36a7/authorizeVeterinarian?amount=1",
        f"ethereum:{MEDICAL_LEDGER}@0xaa36a7/authorizeVeterinarian?param-1=a",
        f"ethereum:{MEDICAL_LEDGER}@0xaa36a7/authorizeVeterinarian\n",
    ])
    def test_parse_rejects_malformed(self, uri):
        with pytest.raises(ValidationError):
            parse_authorization_link(uri)

    @pytest.mark.parametrize("vet", ["0x123", VET + "\n", " " + VET])
    def test_malformed_vet_address(self, vet):
        with pytest.raises(ValidationError):
            build_authorization_link(vet)

    def test_no_params(self):
        link = AuthorizationLink(contract=MEDICAL_LEDGER, chain_id=1, function="pause")
        assert link.to_uri() == f"ethereum:{MEDICAL_LEDGER}@0x1/pause"


class TestQrCode:

    def test_renders_png(self):
        png = render_qr_png(build_authorization_link(VET))
        assert png.startswith(b"\x89PNG\r\n\x1a\n")
        assert len(png) > 100
