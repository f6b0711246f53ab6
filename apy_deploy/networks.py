"""Static per-network configuration.

Token, price feed and whale addresses that scripts and fork tests need.
Everything here is read-only and defined once per network,
so no script hardcodes mainnet addresses inline.

Network names are canonical upper case strings: ``MAINNET``, ``KOVAN``, ...
"""

from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Mapping, Optional

from eth_typing import HexAddress
from eth_utils import to_checksum_address


class UnknownNetwork(KeyError):
    """Network name or chain id we have no configuration for."""


@dataclass(frozen=True, slots=True)
class StablecoinInfo:
    """Pool underlyer and its Chainlink USD price feed."""

    symbol: str

    #: ERC-20 address
    token: HexAddress

    #: Chainlink aggregator giving the USD price
    aggregator: HexAddress


@dataclass(frozen=True, slots=True)
class NetworkConfiguration:
    """Addresses of third party deployments on one network."""

    #: Canonical upper case name
    name: str

    chain_id: int

    #: Symbol -> stablecoin info
    stablecoins: Mapping[str, StablecoinInfo] = field(default_factory=dict)

    #: Upper case aggregator name, e.g. ``ETH-USD`` -> address
    aggregators: Mapping[str, HexAddress] = field(default_factory=dict)

    #: Token symbol -> an account holding a lot of it.
    #:
    #: Used to acquire tokens on a mainnet fork.
    whales: Mapping[str, HexAddress] = field(default_factory=dict)

    #: Pinned fork block for reproducible fork tests
    fork_block_number: Optional[int] = None

    @property
    def is_public(self) -> bool:
        """Deployments to this network need block confirmations and explorer verification."""
        return self.name != "LOCALHOST"


def _network(name: str, chain_id: int, stablecoins=(), aggregators=None, whales=None, fork_block_number=None) -> NetworkConfiguration:
    return NetworkConfiguration(
        name=name,
        chain_id=chain_id,
        stablecoins=MappingProxyType({s.symbol: s for s in stablecoins}),
        aggregators=MappingProxyType(aggregators or {}),
        whales=MappingProxyType(whales or {}),
        fork_block_number=fork_block_number,
    )


#: Curve 3pool holds large DAI, USDC and USDT balances on mainnet
CURVE_3POOL_ADDRESS = "0xbEbc44782C7dB0a1A60Cb6fe97d0b483032FF1C7"

#: Maker MCD_JOIN_DAI
DAI_MINTER_ADDRESS = "0x9759A6Ac90977b93B58547b4A71c78317f391A28"

#: Aave lending pool, holds LINK
LINK_WHALE_ADDRESS = "0x3dfd23A6c5E8BbcFc9581d2E864a68feb6a076d3"

#: Placeholder addresses for tests
FAKE_ADDRESS = to_checksum_address("0xcafecafecafecafecafecafecafecafecafecafe")
ANOTHER_FAKE_ADDRESS = to_checksum_address("0xbaadc0ffeebaadc0ffeebaadc0ffeebaadc0ffee")


MAINNET = _network(
    "MAINNET",
    1,
    stablecoins=[
        StablecoinInfo("DAI", "0x6B175474E89094C44Da98b954EedeAC495271d0F", "0x773616E4d11A78F511299002da57A0a94577F1f4"),
        StablecoinInfo("USDC", "0xA0b86991c6218b36c1d19D4a2e9Eb0cE3606eB48", "0x986b5E1e1755e3C2440e960477f25201B0a8bbD4"),
        StablecoinInfo("USDT", "0xdAC17F958D2ee523a2206206994597C13D831ec7", "0xEe9F2375b4bdF6387aa8265dD4FB8F16512A1d46"),
    ],
    aggregators={
        "ETH-USD": "0x5f4eC3Df9cbd43714FE2740f5E3616155c5b8419",
        "DAI-ETH": "0x773616E4d11A78F511299002da57A0a94577F1f4",
        "USDC-ETH": "0x986b5E1e1755e3C2440e960477f25201B0a8bbD4",
        "USDT-ETH": "0xEe9F2375b4bdF6387aa8265dD4FB8F16512A1d46",
    },
    whales={
        "DAI": CURVE_3POOL_ADDRESS,
        "USDC": CURVE_3POOL_ADDRESS,
        "USDT": CURVE_3POOL_ADDRESS,
        "LINK": LINK_WHALE_ADDRESS,
    },
    fork_block_number=12_990_000,
)

KOVAN = _network(
    "KOVAN",
    42,
    stablecoins=[
        StablecoinInfo("DAI", "0xff795577d9ac8bd7d90ee22b6c1703490b6512fd", "0x22B58f1EbEDfCA50feF632bD73368b2FdA96D541"),
        StablecoinInfo("USDC", "0xe22da380ee6b445bb8273c81944adeb6e8450422", "0x64EaC61A2DFda2c3Fa04eED49AA33D021AeC8838"),
        StablecoinInfo("USDT", "0x13512979ade267ab5100878e2e0f485b568328a4", "0x0bF499444525a23E7Bb61997539725cA2e928138"),
    ],
    aggregators={
        "ETH-USD": "0x9326BFA02ADD2366b30bacB125260Af641031331",
    },
)

RINKEBY = _network("RINKEBY", 4)

GOERLI = _network("GOERLI", 5)

#: Hardhat or Anvil node started by the operator.
#:
#: Anvil forks keep the mainnet chain id, so this is only looked up by name.
LOCALHOST = _network("LOCALHOST", 31337)


#: Canonical name -> configuration
NETWORKS: Mapping[str, NetworkConfiguration] = MappingProxyType({n.name: n for n in (MAINNET, KOVAN, RINKEBY, GOERLI, LOCALHOST)})

#: Chain id -> canonical name
CHAIN_NAMES: Mapping[int, str] = MappingProxyType({n.chain_id: n.name for n in NETWORKS.values()})


def canonical_network_name(name: str) -> str:
    """Upper case a network name and check we know it.

    :raise UnknownNetwork:
        Not a configured network
    """
    assert isinstance(name, str), f"Network name must be str, got {type(name)}"
    canonical = name.strip().upper()
    if canonical not in NETWORKS:
        raise UnknownNetwork(f"Unrecognized network name: {name}. Known networks: {', '.join(NETWORKS)}")
    return canonical


def get_network(name: str) -> NetworkConfiguration:
    """Get network configuration by case-insensitive name."""
    return NETWORKS[canonical_network_name(name)]


def get_network_name(chain_id: int) -> str:
    """Map chain id to canonical network name."""
    try:
        return CHAIN_NAMES[int(chain_id)]
    except KeyError as e:
        raise UnknownNetwork(f"Unrecognized chain id: {chain_id}") from e


def get_stablecoin_address(symbol: str, network: str) -> HexAddress:
    """Get the ERC-20 address of a pool underlyer.

    :raise KeyError:
        No such stablecoin on the network
    """
    config = get_network(network)
    info = config.stablecoins.get(symbol.upper())
    if info is None:
        raise KeyError(f"Could not find address for {symbol}")
    return info.token


def get_aggregator_address(name: str, network: str) -> HexAddress:
    """Get a Chainlink aggregator address by its feed name, e.g. ``ETH-USD``.

    :raise KeyError:
        No such feed on the network
    """
    config = get_network(network)
    try:
        return config.aggregators[name.upper()]
    except KeyError as e:
        raise KeyError(f"Could not find aggregator {name} on {config.name}") from e


def get_whale_address(symbol: str, network: str) -> HexAddress:
    """Get an account holding a large balance of a token."""
    config = get_network(network)
    try:
        return config.whales[symbol.upper()]
    except KeyError as e:
        raise KeyError(f"No known whale for {symbol} on {config.name}") from e
