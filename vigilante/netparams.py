"""Bitcoin network parameters selected by network name."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Dict, Union


class BtcNet(str, Enum):
    """Names of the supported Bitcoin networks."""

    MAINNET = "mainnet"
    TESTNET = "testnet"
    SIMNET = "simnet"
    REGTEST = "regtest"
    SIGNET = "signet"

    def __str__(self) -> str:
        return self.value


@dataclass(frozen=True)
class NetParams:
    """Parameters that tell one Bitcoin network from another."""

    name: str
    net: int
    default_port: str
    bech32_hrp: str
    pubkey_hash_addr_id: int
    script_hash_addr_id: int
    private_key_id: int


MAINNET_PARAMS = NetParams("mainnet", 0xD9B4BEF9, "8333", "bc", 0x00, 0x05, 0x80)
TESTNET3_PARAMS = NetParams("testnet3", 0x0709110B, "18333", "tb", 0x6F, 0xC4, 0xEF)
SIMNET_PARAMS = NetParams("simnet", 0x12141C16, "18555", "sb", 0x3F, 0x7B, 0x64)
REGTEST_PARAMS = NetParams("regtest", 0xDAB5BFFA, "18444", "bcrt", 0x6F, 0xC4, 0xEF)
SIGNET_PARAMS = NetParams("signet", 0x40CF030A, "38333", "tb", 0x6F, 0xC4, 0xEF)

_PARAMS: Dict[BtcNet, NetParams] = {
    BtcNet.MAINNET: MAINNET_PARAMS,
    BtcNet.TESTNET: TESTNET3_PARAMS,
    BtcNet.SIMNET: SIMNET_PARAMS,
    BtcNet.REGTEST: REGTEST_PARAMS,
    BtcNet.SIGNET: SIGNET_PARAMS,
}


def get_btc_params(net: Union[str, BtcNet]) -> NetParams:
    """Return the parameters of the named network; raise ValueError if unknown."""
    try:
        key = BtcNet(net)
    except ValueError:
        names = ", ".join(n.value for n in BtcNet)
        raise ValueError(f"BTC network with name {net} does not exist. should be one of {{{names}}}") from None
    return _PARAMS[key]