"""vodspine utilities.

Retry classification and backoff, and URL parameter helpers.
"""

from vodspine.utils.params import (
    R_PARAM,
    decode_r,
    encode_r,
    query_params,
    with_params,
)
from vodspine.utils.retry import (
    RATE_LIMIT_PATTERN,
    RetryConfig,
    RetryPolicy,
    with_retry,
)

__all__ = [
    # Retry
    "RATE_LIMIT_PATTERN",
    "RetryPolicy",
    "RetryConfig",
    "with_retry",
    # Params
    "R_PARAM",
    "encode_r",
    "decode_r",
    "query_params",
    "with_params",
]
