"""
Configuration for the relay processes.

Structure comes from a TOML file; RPC endpoints and storage paths can be
overridden from the environment, and key material is only ever read from
the environment. Everything is validated at startup so that a missing key
or contract address fails fast.
"""
import os
import logging
import urllib.parse
from typing import Dict, List, Mapping, Optional, Tuple

import tomli
from pydantic import BaseModel, Field, ValidationError, field_validator, model_validator

from .exceptions import ConfigError
from .models import normalize_address

logger = logging.getLogger(__name__)

CONFIG_ENV_VAR = "RELAYER_CONFIG"
DEFAULT_STATE_PATH = "~/.intent-relayer/state.json"
DEFAULT_LEDGER_PATH = "~/.intent-relayer/ledger.json"


def _env_suffix(name: str) -> str:
    return name.upper().replace("-", "_")


def validate_rpc_url(url: str, allow_insecure: bool = False) -> str:
    """
    Require https:// unless the host is localhost/127.0.0.1.

    Raises:
        ValueError: If the URL uses an insecure scheme for a remote host
    """
    parsed = urllib.parse.urlparse(url)
    # Check if it's a localhost or 127.0.0.1 address (with or without port)
    host = parsed.netloc.split(':')[0]
    is_local = host in ('localhost', '127.0.0.1')
    if parsed.scheme not in ('http', 'https'):
        raise ValueError(f"rpc_url must be an http(s) URL (got: {url})")
    if parsed.scheme != 'https' and not is_local and not allow_insecure:
        raise ValueError(f"rpc_url must use https:// for security (got: {parsed.scheme}://)")
    return url


class GasLimits(BaseModel):
    submit: int = Field(500_000, gt=0)
    finalize: int = Field(300_000, gt=0)
    mint: int = Field(500_000, gt=0)


class ChainConfig(BaseModel):
    """One ledger and the bridge contracts deployed on it"""
    name: str
    chain_id: int = Field(..., gt=0)
    rpc_url: str
    intent_commitment: Optional[str] = None
    message_inbox: Optional[str] = None
    settlement: Optional[str] = None
    finalize_interval: float = Field(60.0, gt=0)
    allow_insecure_rpc: bool = False
    gas_limits: GasLimits = Field(default_factory=GasLimits)

    @field_validator("intent_commitment", "message_inbox", "settlement", mode="before")
    @classmethod
    def _check_address(cls, value):
        if value in (None, ""):
            return None
        return normalize_address(value)

    @model_validator(mode="after")
    def _check_rpc(self):
        validate_rpc_url(self.rpc_url, self.allow_insecure_rpc)
        return self


class DirectionConfig(BaseModel):
    """One relay direction, source chain -> destination chain"""
    source: str
    destination: str
    required_confirmations: int = Field(..., ge=0)
    poll_interval: float = Field(15.0, gt=0)
    confirmation_timeout: float = Field(300.0, gt=0)
    max_block_range: int = Field(2000, gt=0)
    start_block_lookback: int = Field(10, ge=0)
    enabled: bool = True

    @property
    def name(self) -> str:
        return f"{self.source}->{self.destination}"


class SigningConfig(BaseModel):
    tss_key_env: str = "TSS_PRIVATE_KEY"
    finalizer_key_env: str = "FINALIZER_PRIVATE_KEY"


class StorageConfig(BaseModel):
    state_path: str = DEFAULT_STATE_PATH
    ledger_path: str = DEFAULT_LEDGER_PATH


class BacklogConfig(BaseModel):
    direction: Optional[str] = None
    rate_limit_seconds: float = Field(2.0, ge=0)
    interval: Optional[float] = Field(None, gt=0)


class RpcConfig(BaseModel):
    timeout: int = Field(30, gt=0)
    retry_count: int = Field(3, ge=0)
    receipt_timeout: int = Field(120, gt=0)
    send_retries: int = Field(3, ge=1)


class RelayConfig(BaseModel):
    """Complete relay configuration"""
    chains: Dict[str, ChainConfig]
    directions: List[DirectionConfig]
    signing: SigningConfig = Field(default_factory=SigningConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)
    backlog: BacklogConfig = Field(default_factory=BacklogConfig)
    rpc: RpcConfig = Field(default_factory=RpcConfig)

    @model_validator(mode="after")
    def _check_references(self):
        if not self.directions:
            raise ValueError("At least one direction must be configured")
        seen = set()
        for direction in self.directions:
            for chain_name in (direction.source, direction.destination):
                if chain_name not in self.chains:
                    raise ValueError(
                        f"Direction {direction.name} references unknown chain '{chain_name}'. "
                        f"Known chains: {', '.join(sorted(self.chains))}"
                    )
            if direction.source == direction.destination:
                raise ValueError(f"Direction {direction.name} must connect two different chains")
            if direction.name in seen:
                raise ValueError(f"Direction {direction.name} is configured twice")
            seen.add(direction.name)

            source = self.chains[direction.source]
            destination = self.chains[direction.destination]
            if direction.enabled and not source.intent_commitment:
                raise ValueError(f"Chain '{source.name}' is a source but has no intent_commitment address")
            if direction.enabled and not destination.message_inbox:
                raise ValueError(f"Chain '{destination.name}' is a destination but has no message_inbox address")
            if direction.enabled and not destination.settlement:
                raise ValueError(f"Chain '{destination.name}' is a destination but has no settlement address")

        if self.backlog.direction and self.backlog.direction not in seen:
            raise ValueError(f"Backlog direction '{self.backlog.direction}' is not a configured direction")
        return self

    def chain(self, name: str) -> ChainConfig:
        return self.chains[name]

    def direction(self, name: str) -> DirectionConfig:
        """
        Look up a direction by its ``source->destination`` name.

        Raises:
            ConfigError: If no such direction is configured
        """
        for direction in self.directions:
            if direction.name == name:
                return direction
        available = ", ".join(d.name for d in self.directions)
        raise ConfigError(f"Direction '{name}' not found. Available directions: {available}")

    def enabled_directions(self) -> List[DirectionConfig]:
        return [d for d in self.directions if d.enabled]

    def destination_chains(self) -> List[ChainConfig]:
        """Chains that receive messages, each needing one Finalizer"""
        names = []
        for direction in self.enabled_directions():
            if direction.destination not in names:
                names.append(direction.destination)
        return [self.chains[name] for name in names]


def resolve_keys(config: RelayConfig, env: Optional[Mapping[str, str]] = None) -> Tuple[str, str]:
    """
    Read the TSS and finalizer private keys from the environment.

    The finalizer key falls back to the TSS key when unset.

    Returns:
        (tss_private_key, finalizer_private_key)

    Raises:
        ConfigError: If the TSS key is missing
    """
    env = os.environ if env is None else env
    tss_key = env.get(config.signing.tss_key_env, "").strip()
    if not tss_key:
        raise ConfigError(f"Signing key missing: set {config.signing.tss_key_env}")
    finalizer_key = env.get(config.signing.finalizer_key_env, "").strip()
    if not finalizer_key:
        logger.info(f"{config.signing.finalizer_key_env} not set, finalizer will use the TSS key")
        finalizer_key = tss_key
    return tss_key, finalizer_key


def _apply_env_overrides(data: Dict, env: Mapping[str, str]) -> Dict:
    for name, chain in data.get("chains", {}).items():
        if isinstance(chain, dict):
            chain["name"] = name
            override = env.get(f"RELAYER_RPC_{_env_suffix(name)}")
            if override:
                chain["rpc_url"] = override

    storage = data.setdefault("storage", {})
    if env.get("RELAYER_STATE_PATH"):
        storage["state_path"] = env["RELAYER_STATE_PATH"]
    if env.get("RELAYER_LEDGER_PATH"):
        storage["ledger_path"] = env["RELAYER_LEDGER_PATH"]
    return data


def parse_config(data: Dict, env: Optional[Mapping[str, str]] = None) -> RelayConfig:
    """
    Validate a configuration mapping (as parsed from TOML).

    Raises:
        ConfigError: If validation fails
    """
    env = os.environ if env is None else env
    data = _apply_env_overrides(data, env)
    try:
        config = RelayConfig.model_validate(data)
    except ValidationError as e:
        raise ConfigError(f"Invalid relay configuration: {e}") from e

    for direction in config.enabled_directions():
        if direction.required_confirmations == 0:
            logger.warning(
                f"Direction {direction.name} relays with 0 confirmations; "
                f"check the source chain's finality guarantees"
            )
    return config


def load_config(path: Optional[str] = None, env: Optional[Mapping[str, str]] = None) -> RelayConfig:
    """
    Load and validate the relay configuration.

    Args:
        path: TOML file path; defaults to the RELAYER_CONFIG environment variable
        env: Environment mapping (defaults to os.environ)

    Returns:
        Validated RelayConfig

    Raises:
        ConfigError: If the file is missing, unreadable or invalid
    """
    env = os.environ if env is None else env
    path = path or env.get(CONFIG_ENV_VAR)
    if not path:
        raise ConfigError(f"No configuration file given: pass --config or set {CONFIG_ENV_VAR}")

    try:
        with open(os.path.expanduser(path), "rb") as f:
            data = tomli.load(f)
    except FileNotFoundError:
        raise ConfigError(f"Configuration file not found: {path}")
    except tomli.TOMLDecodeError as e:
        raise ConfigError(f"Configuration file {path} is not valid TOML: {e}") from e

    logger.debug(f"Loaded configuration from {path}")
    return parse_config(data, env)
