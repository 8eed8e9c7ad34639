"""Pydantic models for the retrieval checker.

Provides validated configuration sections, the task record fed into the
dispute queue and the statistics record produced for each task.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from enum import Enum, IntEnum
from typing import Any

from pydantic import BaseModel, Field, field_validator

MAX_CAR_SIZE = 200 * 1024 * 1024  # 200 MiB


class LogLevel(str, Enum):
    """Logging levels."""

    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class RetrievalProtocol(str, Enum):
    """Retrieval protocols advertised to IPNI."""

    BITSWAP = "bitswap"
    GRAPHSYNC = "graphsync"
    HTTP = "http"


class IndexerResult(str, Enum):
    """Outcome of the IPNI lookup.

    Failed lookups are reported as ``ERROR_<status>`` (see :meth:`error`), so
    the ``indexer_result`` field of a Stats record is a plain string.
    """

    OK = "OK"
    HTTP_NOT_ADVERTISED = "HTTP_NOT_ADVERTISED"
    NO_VALID_ADVERTISEMENT = "NO_VALID_ADVERTISEMENT"
    ERROR_FETCH = "ERROR_FETCH"

    @staticmethod
    def error(status_code: int | None) -> str:
        """Return the indexer result for a failed lookup."""
        if isinstance(status_code, int):
            return f"ERROR_{status_code}"
        return IndexerResult.ERROR_FETCH.value


class PeerIdSource(str, Enum):
    """Sources that can map a miner id to its index provider peer id."""

    MINER_INFO = "miner_info"
    CONTRACT = "contract"


class DisputeStatus(IntEnum):
    """Dispute states as stored by the RetrieveChecker contract."""

    NONE = 0
    PENDING = 1
    RESOLVED = 2  # retrieval successful
    FAILED = 3  # retrieval failed
    REJECTED = 4  # check could not be executed


# Configuration


class ObservabilityConfig(BaseModel):
    """Logging configuration."""

    log_level: LogLevel = Field(default=LogLevel.INFO, description="Log level")
    log_file: str | None = Field(None, description="Log file path")
    structured_logging: bool = Field(
        default=True,
        description="Write JSON lines to the log file",
    )
    log_correlation_id: bool = Field(
        default=True,
        description="Include correlation IDs",
    )


class IndexerConfig(BaseModel):
    """IPNI (content routing index) client configuration."""

    url: str = Field(
        default="https://cid.contact",
        description="IPNI base URL, queried as <url>/cid/<cid>",
    )
    max_attempts: int = Field(default=5, ge=1, le=20, description="Maximum query attempts")
    min_backoff: float = Field(
        default=1.0,
        ge=0.0,
        le=60.0,
        description="Delay before the first retry in seconds",
    )
    backoff_multiplier: float = Field(
        default=2.0,
        ge=1.0,
        le=10.0,
        description="Backoff growth per retry",
    )
    request_timeout: float = Field(
        default=30.0,
        gt=0.0,
        le=300.0,
        description="Per-request timeout in seconds",
    )


class ChainConfig(BaseModel):
    """Filecoin JSON-RPC configuration."""

    rpc_url: str = Field(
        default="https://api.calibration.node.glif.io/",
        description="Filecoin JSON-RPC endpoint",
    )
    rpc_auth_token: str | None = Field(
        default=None,
        description="Bearer token sent with RPC requests",
    )
    request_timeout: float = Field(
        default=60.0,
        gt=0.0,
        le=600.0,
        description="RPC request timeout in seconds",
    )
    max_attempts: int = Field(default=5, ge=1, le=20, description="Maximum RPC attempts")
    min_backoff: float = Field(
        default=5.0,
        ge=0.0,
        le=300.0,
        description="Initial and minimum delay between RPC attempts in seconds",
    )
    backoff_multiplier: float = Field(
        default=1.5,
        ge=1.0,
        le=10.0,
        description="Backoff growth per retry",
    )
    peer_id_sources: list[PeerIdSource] = Field(
        default_factory=lambda: [PeerIdSource.MINER_INFO],
        min_length=1,
        description="Peer id sources in priority order",
    )
    source_timeout: float = Field(
        default=120.0,
        gt=0.0,
        le=3600.0,
        description="Time box for each peer id source in seconds",
    )
    peer_id_contract_address: str = Field(
        default="0x14183aD016Ddc83D638425D6328009aa390339Ce",
        description="MinerPeerIDMapping contract address",
    )

    @field_validator("peer_id_sources")
    @classmethod
    def _unique_sources(cls, v: list[PeerIdSource]) -> list[PeerIdSource]:
        if len(set(v)) != len(v):
            msg = "peer_id_sources must not contain duplicates"
            raise ValueError(msg)
        return v


class RetrievalConfig(BaseModel):
    """Content retrieval and verification configuration."""

    idle_timeout: float = Field(
        default=60.0,
        gt=0.0,
        le=3600.0,
        description="Abort if no data arrives for this many seconds",
    )
    max_request_duration: float = Field(
        default=90.0,
        gt=0.0,
        le=86400.0,
        description="Hard deadline for a retrieval in seconds",
    )
    max_car_size: int = Field(
        default=MAX_CAR_SIZE,
        ge=1,
        description="CAR size above which carTooLarge is reported",
    )
    head_timeout: float = Field(
        default=10.0,
        gt=0.0,
        le=300.0,
        description="HEAD request timeout in seconds",
    )
    full_verification: bool = Field(
        default=True,
        description="Fetch the whole DAG instead of the single requested block",
    )
    lassie_url: str | None = Field(
        default=None,
        description="Lassie daemon base URL used to fetch non-HTTP (ipfs://) retrievals",
    )


class DisputeQueueConfig(BaseModel):
    """Dispute intake configuration."""

    event_poll_interval: float = Field(
        default=12.0,
        gt=0.0,
        le=3600.0,
        description="Seconds between DisputeRaised event polls",
    )
    round_length: float = Field(
        default=20 * 60.0,
        gt=0.0,
        description="Length of a bulk-poll round in seconds",
    )
    max_tasks_per_round: int = Field(
        default=60,
        ge=1,
        description="Expected number of tasks per round",
    )
    max_jitter: float = Field(
        default=10.0,
        ge=0.0,
        le=600.0,
        description="Maximum random delay added between bulk polls in seconds",
    )


class Config(BaseModel):
    """Main configuration model."""

    observability: ObservabilityConfig = Field(
        default_factory=ObservabilityConfig,
        description="Observability configuration",
    )
    indexer: IndexerConfig = Field(
        default_factory=IndexerConfig,
        description="IPNI client configuration",
    )
    chain: ChainConfig = Field(
        default_factory=ChainConfig,
        description="Filecoin chain configuration",
    )
    retrieval: RetrievalConfig = Field(
        default_factory=RetrievalConfig,
        description="Retrieval configuration",
    )
    queue: DisputeQueueConfig = Field(
        default_factory=DisputeQueueConfig,
        description="Dispute intake configuration",
    )


# Task and stats records


class RetrievalTask(BaseModel):
    """A dispute to verify: is ``cid`` retrievable from ``miner_id``?"""

    id: str = Field(..., description="Dispute id")
    cid: str = Field(..., min_length=1, description="Content identifier")
    miner_id: str = Field(..., alias="minerId", min_length=1, description="Storage provider id")
    raiser: str | None = Field(default=None, description="Address that raised the dispute")

    model_config = {"frozen": True, "populate_by_name": True}

    @field_validator("id", mode="before")
    @classmethod
    def _coerce_id(cls, v: Any) -> str:
        # Contract ids arrive as ints
        return str(v)

    @classmethod
    def from_contract_event(
        cls,
        dispute_id: int | str,
        cid_hex: str | bytes,
        sp_actor_id: int | str,
        raiser: str | None = None,
    ) -> RetrievalTask:
        """Build a task from DisputeRaised/getDisputeDetails fields.

        The contract stores the CID string as raw ASCII bytes, which the RPC
        layer returns hex-encoded.
        """
        if isinstance(cid_hex, bytes):
            cid = cid_hex.decode("ascii")
        else:
            cid = bytes.fromhex(cid_hex.removeprefix("0x")).decode("ascii")
        return cls(id=str(dispute_id), cid=cid, miner_id=f"f0{sp_actor_id}", raiser=raiser)


def _now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class RetrievalStats:
    """Measurements collected while checking one task.

    Use the ``record_*`` helpers for fields with invariants: byte counts only
    grow, ``car_too_large`` never reverts and ``first_byte_at`` is stamped once.
    """

    timeout: bool = False
    start_at: datetime | None = None
    first_byte_at: datetime | None = None
    end_at: datetime | None = None
    car_too_large: bool = False
    byte_length: int = 0
    car_checksum: str | None = None
    status_code: int | None = None
    head_status_code: int | None = None
    indexer_result: str | None = None
    protocol: str | None = None
    provider_id: str | None = None
    provider_address: str | None = None
    full_verification: bool = False
    _status_final: bool = field(default=False, repr=False)

    def record_start(self) -> None:
        self.start_at = _now()

    def record_end(self) -> None:
        self.end_at = _now()

    def record_chunk(self, size: int, max_car_size: int = MAX_CAR_SIZE) -> bool:
        """Account for a received chunk.

        Returns:
            True if this chunk pushed the total over ``max_car_size``

        """
        if self.first_byte_at is None:
            self.first_byte_at = _now()
        self.byte_length += max(0, size)
        if self.byte_length > max_car_size and not self.car_too_large:
            self.car_too_large = True
            return True
        return False

    def record_response_status(self, status: int) -> None:
        """Record the HTTP status of the retrieval response.

        A non-2xx status is final; a 2xx status can still be replaced by a
        classified failure discovered while reading or verifying the body.
        """
        if self._status_final:
            return
        self.status_code = status
        self._status_final = not 200 <= status < 300

    def record_failure(self, code: int) -> None:
        """Record a classified failure unless a final status is already set."""
        if self._status_final:
            return
        self.status_code = code
        self._status_final = True

    def as_measurement(self) -> dict[str, Any]:
        """Return the record with camelCase keys, as reported upstream."""
        data = asdict(self)
        data.pop("_status_final")
        out: dict[str, Any] = {}
        for key, value in data.items():
            head, *rest = key.split("_")
            camel = head + "".join(part.capitalize() for part in rest)
            out[camel] = value.isoformat() if isinstance(value, datetime) else value
        return out

    def dispute_status(self) -> DisputeStatus:
        """Map the outcome to the status submitted to the contract."""
        if self.status_code == 200:
            return DisputeStatus.RESOLVED
        return DisputeStatus.FAILED
