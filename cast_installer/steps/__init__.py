from .step_10_resolve import ResolveDistroStep
from .step_20_download import DownloadStep
from .step_30_verify import VerifyStep
from .step_40_extract import ExtractStep
from .step_50_prepare_salt import PrepareSaltStep
from .step_60_apply_states import ApplyStatesStep
from .step_70_record_state import RecordStateStep

__all__ = [
    "ResolveDistroStep",
    "DownloadStep",
    "VerifyStep",
    "ExtractStep",
    "PrepareSaltStep",
    "ApplyStatesStep",
    "RecordStateStep",
]
