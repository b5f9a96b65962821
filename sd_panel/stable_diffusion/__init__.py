from .sd_client import SDClient, autodetect_endpoint
from .progress_poller import ProgressPoller
from .timeout import TimeoutOptions, compute_dynamic_timeout
from .errors import *
from .models import *

__all__ = [
    "SDClient",
    "ProgressPoller",
    "TimeoutOptions",
    "compute_dynamic_timeout",
    "autodetect_endpoint",
]
