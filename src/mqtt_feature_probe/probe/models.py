"""
Data Models for Probe Configuration and Results.

Defines a hierarchy of models shared by the sessions, the probes
and the runner that renders them.
"""
from dataclasses import dataclass, field, asdict
import json
from typing import Any, Dict, Optional, Tuple

from enum import Enum
class OutcomeKind(str, Enum):
    OK = "ok"
    TIMEOUT = "timeout"
    INTERRUPTED = "interrupted"
    PUBLISH_FAILED = "publish_failed"
    SUBSCRIBE_FAILED = "subscribe_failed"
    CONNECT_FAILED = "connect_failed"
    WRONG_PAYLOAD = "wrong_payload"
    NOT_SHARED = "not_shared"
    UNDEFINED = "undefined"

# --- Base Classes (The "Blueprints") ---

@dataclass(frozen=True)
class ResultBase:
    """Base class for everything a probe hands back to its caller."""

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    def to_json(self) -> str:
        """Converts the object to a JSON string."""
        return json.dumps(self.to_dict())

@dataclass(frozen=True)
class ProbeOutcome(ResultBase):
    """
    The classified outcome of one probe attempt.

    `reason` is mandatory for UNDEFINED and optional otherwise, where it
    carries the broker's reason code name (e.g. "Client identifier not valid").
    """
    kind: OutcomeKind
    reason: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.kind is OutcomeKind.OK

    @classmethod
    def undefined(cls, reason: str) -> "ProbeOutcome":
        return cls(OutcomeKind.UNDEFINED, reason)

    def __str__(self) -> str:
        if self.reason:
            return f"{self.kind.value} ({self.reason})"
        return self.kind.value

# --- Boundary Discovery ---

@dataclass(frozen=True)
class SizedProbeResult(ResultBase):
    size: int
    outcome: ProbeOutcome

@dataclass(frozen=True)
class DiscoveryResult(ResultBase):
    """
    Result of one boundary discovery run.

    `boundary` is the last candidate the search examined, which may be a
    candidate that failed. `confirmed_boundary` is the largest candidate
    that actually succeeded.
    """
    boundary: int
    trials: Tuple[SizedProbeResult, ...] = ()

    @property
    def confirmed_boundary(self) -> int:
        sizes = [trial.size for trial in self.trials if trial.outcome.ok]
        return max(sizes) if sizes else -1

    def to_dict(self) -> Dict[str, Any]:
        return {**asdict(self), "confirmed_boundary": self.confirmed_boundary}

# --- The "Letters" (Per-Probe Results) ---

@dataclass(frozen=True)
class ConnectAck(ResultBase):
    """A CONNACK as the broker sent it."""
    reason_code: str
    value: int
    session_present: bool = False
    properties: Dict[str, Any] = field(default_factory=dict)

    @property
    def is_failure(self) -> bool:
        return self.value >= 0x80

@dataclass(frozen=True)
class ConnectResult(ResultBase):
    outcome: ProbeOutcome
    ack: Optional[ConnectAck] = None
    connected: bool = False

@dataclass(frozen=True)
class QosResult(ResultBase):
    """Delivery statistics of one QoS probe. `elapsed` is in seconds."""
    qos: int
    tries: int
    received: int
    elapsed: float
    outcome: ProbeOutcome

@dataclass(frozen=True)
class WildcardResult(ResultBase):
    single_level: ProbeOutcome
    multi_level: ProbeOutcome

@dataclass(frozen=True)
class CharacterResult(ResultBase):
    character: str
    outcome: ProbeOutcome

@dataclass(frozen=True)
class ClientIdCharactersResult(ResultBase):
    """
    Result of the identifier character scan. When `all_accepted` is set the
    broker took the whole character set at once and no single characters
    were tried.
    """
    all_accepted: bool
    characters: Tuple[CharacterResult, ...] = ()

    @property
    def rejected(self) -> Tuple[CharacterResult, ...]:
        return tuple(result for result in self.characters if not result.outcome.ok)

# --- The "Envelope" (Connection Context) ---

@dataclass(frozen=True)
class ReceivedMessage:
    """A delivered PUBLISH, as probe callbacks see it."""
    topic: str
    payload: bytes
    qos: int = 0
    retain: bool = False

@dataclass(frozen=True, kw_only=True)
class TlsConfig:
    ca_certs: Optional[str] = None
    certfile: Optional[str] = None
    keyfile: Optional[str] = None
    insecure: bool = False

@dataclass(frozen=True, kw_only=True)
class ConnectionConfig:
    """
    Everything needed to open a probe session against one broker.

    `client_id` is the prefix used for generated session identifiers, since
    a single probe may hold up to three sessions at once.
    """
    host: str = "localhost"
    port: int = 1883
    username: Optional[str] = None
    password: Optional[bytes] = field(default=None, repr=False)
    tls: Optional[TlsConfig] = None
    client_id: str = "probe-"
    timeout: float = 10.0
    keepalive: int = 60
    verbose: bool = False
