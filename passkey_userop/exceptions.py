from dataclasses import dataclass
from enum import Enum
from typing import ClassVar


class PipelineExceptionCode(Enum):
    Configuration = "configuration"
    Decode = "decode"
    Precondition = "precondition"
    ChainRead = "chain_read"
    SimulationRevert = "simulation_revert"
    BundlerRejection = "bundler_rejection"
    ConfirmationTimeout = "confirmation_timeout"
    RpcTransport = "rpc_transport"


@dataclass
class UserOperationPipelineException(Exception):
    exception_code: ClassVar[PipelineExceptionCode]
    message: str

    def __str__(self) -> str:
        return self.message


@dataclass
class ConfigurationError(UserOperationPipelineException):
    exception_code = PipelineExceptionCode.Configuration


@dataclass
class DecodeError(UserOperationPipelineException):
    exception_code = PipelineExceptionCode.Decode


@dataclass
class PreconditionError(UserOperationPipelineException):
    exception_code = PipelineExceptionCode.Precondition


@dataclass
class ChainReadError(UserOperationPipelineException):
    exception_code = PipelineExceptionCode.ChainRead


@dataclass
class SimulationRevertError(UserOperationPipelineException):
    exception_code = PipelineExceptionCode.SimulationRevert
    revert_data: str = "0x"


@dataclass
class BundlerRejection(UserOperationPipelineException):
    exception_code = PipelineExceptionCode.BundlerRejection
    rpc_error_code: int | None = None


@dataclass
class ConfirmationTimeout(UserOperationPipelineException):
    exception_code = PipelineExceptionCode.ConfirmationTimeout
    transaction_hash: str | None = None


@dataclass
class RpcTransportError(UserOperationPipelineException):
    exception_code = PipelineExceptionCode.RpcTransport
