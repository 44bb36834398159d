"""
Rate-limit-aware HTTP GET helper.
Both tracker clients go through perform_request_with_retries so request policy lives in one place.
By default a request is attempted once; BUGDASH_MAX_RETRIES raises the number of attempts for
responses that ask the caller to come back later (429/503, Retry-After, exhausted rate limit).
"""

import os
import time
import random
import email.utils
import logging
from datetime import datetime, timezone
from typing import Optional, Dict, Any
import requests

logger = logging.getLogger(__name__)


def _env_float(name: str) -> Optional[float]:
    raw = os.getenv(name)
    return float(raw) if raw not in (None, "") else None


# defaults from environment
DEFAULT_MAX_RETRIES = int(os.getenv("BUGDASH_MAX_RETRIES", "1"))
DEFAULT_BACKOFF_BASE = float(os.getenv("BUGDASH_BACKOFF_BASE", "0.5"))
DEFAULT_BACKOFF_JITTER = _env_float("BUGDASH_BACKOFF_JITTER")
DEFAULT_MAX_BACKOFF = float(os.getenv("BUGDASH_MAX_BACKOFF", "120.0"))
DEFAULT_TIMEOUT = _env_float("BUGDASH_TIMEOUT")

# runtime-overrides
_runtime_max_retries: Optional[int] = None
_runtime_backoff_base: Optional[float] = None
_runtime_backoff_jitter: Optional[float] = None
_runtime_max_backoff: Optional[float] = None
_runtime_timeout: Optional[float] = None


def configure_retry(
    max_retries: Optional[int] = None,
    backoff_base: Optional[float] = None,
    backoff_jitter: Optional[float] = None,
    max_backoff: Optional[float] = None,
    timeout: Optional[float] = None,
):
    """Configure request defaults at runtime (e.g. from CLI)."""
    global _runtime_max_retries, _runtime_backoff_base, _runtime_backoff_jitter, _runtime_max_backoff, _runtime_timeout
    if max_retries is not None:
        _runtime_max_retries = int(max_retries)
    if backoff_base is not None:
        _runtime_backoff_base = float(backoff_base)
    if backoff_jitter is not None:
        _runtime_backoff_jitter = float(backoff_jitter)
    if max_backoff is not None:
        _runtime_max_backoff = float(max_backoff)
    if timeout is not None:
        _runtime_timeout = float(timeout)


def reset_retry_config():
    """Drop every runtime override and fall back to the environment defaults."""
    global _runtime_max_retries, _runtime_backoff_base, _runtime_backoff_jitter, _runtime_max_backoff, _runtime_timeout
    _runtime_max_retries = None
    _runtime_backoff_base = None
    _runtime_backoff_jitter = None
    _runtime_max_backoff = None
    _runtime_timeout = None


def _parse_retry_after(raw_ra: Optional[str]) -> Optional[float]:
    if not raw_ra:
        return None
    try:
        return float(raw_ra)
    except ValueError:
        pass
    try:
        dt = email.utils.parsedate_to_datetime(raw_ra)
    except (TypeError, ValueError):
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return max(0.0, (dt - datetime.now(timezone.utc)).total_seconds())


def _header_number(headers: Dict[str, Any], key: str, cast):
    val = headers.get(key)
    if val is None:
        return None
    try:
        return cast(val)
    except (TypeError, ValueError):
        return None


def _parse_rate_headers(resp):
    headers = getattr(resp, 'headers', None) or {}
    ra = _parse_retry_after(headers.get('Retry-After'))
    rl_remaining = _header_number(headers, 'X-RateLimit-Remaining', int)
    rl_reset = _header_number(headers, 'X-RateLimit-Reset', float)
    return ra, rl_remaining, rl_reset


def _resolve_backoff_params(backoff_base: Optional[float], backoff_jitter: Optional[float], max_backoff: Optional[float]):
    if backoff_base is not None:
        base = float(backoff_base)
    elif _runtime_backoff_base is not None:
        base = _runtime_backoff_base
    else:
        base = DEFAULT_BACKOFF_BASE

    if backoff_jitter is not None:
        jitter = float(backoff_jitter)
    elif _runtime_backoff_jitter is not None:
        jitter = _runtime_backoff_jitter
    elif DEFAULT_BACKOFF_JITTER is not None:
        jitter = DEFAULT_BACKOFF_JITTER
    else:
        jitter = base

    if max_backoff is not None:
        cap = float(max_backoff)
    elif _runtime_max_backoff is not None:
        cap = _runtime_max_backoff
    else:
        cap = DEFAULT_MAX_BACKOFF

    return base, jitter, cap


def _should_retry_response(status_code: int, ra: Optional[float], rl_remaining: Optional[int]) -> bool:
    if status_code in (429, 503):
        return True
    if ra is not None:
        return True
    return rl_remaining is not None and rl_remaining <= 0


def _compute_wait_seconds(ra: Optional[float], rl_reset: Optional[float], backoff: float, jitter: float, cap: float) -> float:
    if ra is not None:
        wait = ra
    elif rl_reset:
        wait = max(0.0, rl_reset - time.time())
    else:
        wait = backoff
    return min(wait + random.uniform(0, jitter), cap)


def _parse_body(resp):
    try:
        return resp.json()
    except ValueError:
        return getattr(resp, 'text', None)


def _attempt_request_once(url: str, headers: Dict[str, str], params: Dict[str, Any], timeout: Optional[float]):
    try:
        resp = requests.get(url, headers=headers, params=params, timeout=timeout)
    except requests.RequestException as ex:
        return 'error', {'response': str(ex), 'status': 0}

    status = getattr(resp, 'status_code', 0)
    if status == 200:
        return 'success', {'response': _parse_body(resp), 'status': status}

    ra, rl_remaining, rl_reset = _parse_rate_headers(resp)
    if _should_retry_response(status, ra, rl_remaining):
        return 'retry', {'response': getattr(resp, 'text', None), 'status': status, 'ra': ra, 'rl_reset': rl_reset}

    return 'fail', {'response': _parse_body(resp), 'status': status}


def perform_request_with_retries(
    url: str,
    headers: Optional[Dict[str, str]] = None,
    params: Optional[Dict[str, Any]] = None,
    max_retries: Optional[int] = None,
    backoff_base: Optional[float] = None,
    backoff_jitter: Optional[float] = None,
    max_backoff: Optional[float] = None,
    timeout: Optional[float] = None,
) -> Dict[str, Any]:
    """Perform a GET and return {'response', 'status', 'timestamp'}.

    Never raises for HTTP or connection failures: the caller inspects 'status'
    (0 means the request never got a response) and decides what an error is.
    """
    if max_retries is not None:
        attempts = int(max_retries)
    elif _runtime_max_retries is not None:
        attempts = _runtime_max_retries
    else:
        attempts = DEFAULT_MAX_RETRIES
    attempts = max(1, attempts)
    if timeout is None:
        timeout = _runtime_timeout if _runtime_timeout is not None else DEFAULT_TIMEOUT
    backoff, jitter, cap = _resolve_backoff_params(backoff_base, backoff_jitter, max_backoff)

    result: Dict[str, Any] = {}
    for attempt in range(attempts):
        outcome, result = _attempt_request_once(url, headers or {}, params or {}, timeout)
        result['timestamp'] = time.time()
        if outcome in ('success', 'fail'):
            break
        if attempt + 1 >= attempts:
            break
        if outcome == 'retry':
            wait = _compute_wait_seconds(result.get('ra'), result.get('rl_reset'), backoff, jitter, cap)
        else:
            wait = min(backoff + random.uniform(0, jitter), cap)
        logger.debug("GET %s returned status %s, retrying in %.1fs (attempt %d/%d)", url, result.get('status'), wait, attempt + 1, attempts)
        time.sleep(wait)
        backoff = min(backoff * 2, cap)

    result.pop('ra', None)
    result.pop('rl_reset', None)
    return result


__all__ = ["configure_retry", "reset_retry_config", "perform_request_with_retries"]
