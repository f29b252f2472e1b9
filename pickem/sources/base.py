"""Shared HTTP plumbing for upstream adapters.

Log contract:
    - HTTP problems surface via ``log_api_error`` (red text on stderr) with
      credentials redacted, then raise ``TransientUpstreamError``.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional, Tuple

import pandas as pd
import requests

from pickem.common.errors import TransientUpstreamError
from pickem.common.io_utils import log_api_error, redact
from pickem.common.models import CandidateGame, FinalScore, RankingEntry


def int_or_none(value: Any) -> Optional[int]:
    try:
        if value is None or (isinstance(value, float) and pd.isna(value)):
            return None
        return int(float(value))
    except (TypeError, ValueError):
        return None


def float_or_none(value: Any) -> Optional[float]:
    try:
        if value is None:
            return None
        result = float(value)
    except (TypeError, ValueError):
        return None
    return None if pd.isna(result) else result


def external_id_or_none(value: Any) -> Optional[str]:
    """Stable string id; float-coerced integer ids lose their ".0"."""
    if value is None or (isinstance(value, float) and pd.isna(value)):
        return None
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    text = str(value).strip()
    return text or None


def header_int(response: requests.Response, *names: str) -> Optional[int]:
    for name in names:
        value = response.headers.get(name)
        if value is not None:
            parsed = int_or_none(value)
            if parsed is not None:
                return parsed
    return None


def _column(frame: pd.DataFrame, options: List[str]) -> pd.Series:
    """First non-null value per row across ``options``, in priority order."""
    present = [name for name in options if name in frame.columns]
    if not present:
        return pd.Series([None] * len(frame), index=frame.index, dtype=object)
    result = frame[present[0]].astype(object)
    for name in present[1:]:
        result = result.where(pd.notna(result), frame[name].astype(object))
    return result


def normalize_fields(records: List[dict], aliases: Dict[str, List[str]]) -> List[Dict[str, Any]]:
    """Rename heterogeneous payload keys (camelCase/snake_case) onto one schema.

    ``aliases`` maps canonical field -> candidate source keys in priority order.
    Missing fields come back as None; NaN values are converted to None.
    """
    if not records:
        return []
    frame = pd.DataFrame.from_records(records)
    out = pd.DataFrame(index=frame.index)
    for canonical, options in aliases.items():
        out[canonical] = _column(frame, options)
    out = out.astype(object).where(pd.notna(out), None)
    return out.to_dict(orient="records")


class UpstreamSource:
    """Base class for game sources; subclasses implement ``fetch_games``."""

    source_id = "unknown"

    def __init__(self, session: Optional[requests.Session] = None, timeout: float = 30.0) -> None:
        self.session = session or requests.Session()
        self.timeout = timeout
        self.last_quota: Optional[int] = None
        self.last_endpoint: str = ""
        self.last_from_cache = False
        self._secret: Optional[str] = None

    def fetch_games(self, year: int, week: int) -> List[CandidateGame]:
        raise NotImplementedError

    def fetch_rankings(self, year: int, week: int) -> List[RankingEntry]:
        return []

    def fetch_final_scores(self, year: int, week: int) -> List[FinalScore]:
        return []

    def _get(
        self,
        url: str,
        *,
        params: Optional[Dict[str, Any]] = None,
        headers: Optional[Dict[str, str]] = None,
        endpoint: str = "",
    ) -> requests.Response:
        self.last_endpoint = endpoint or url
        self.last_from_cache = False
        try:
            response = self.session.get(url, params=params, headers=headers, timeout=self.timeout)
        except requests.RequestException as exc:
            message = redact(f"{type(exc).__name__}: {exc}", self._secret)
            log_api_error(f"API_ERROR({self.source_id}): url={redact(url, self._secret)} error={message}")
            raise TransientUpstreamError(self.source_id, message) from exc
        quota = self._quota_from(response)
        if quota is not None:
            self.last_quota = quota
        status = int(getattr(response, "status_code", 0) or 0)
        if status >= 400:
            try:
                body = (response.text or "")[:200]
            except Exception:
                body = "<unavailable>"
            log_api_error(
                f"API_HTTP_ERROR({self.source_id}): url={redact(url, self._secret)} "
                f"status={status} body={redact(body, self._secret)}"
            )
            raise TransientUpstreamError(
                self.source_id,
                f"HTTP {status}",
                status=status,
                quota_remaining=self.last_quota,
            )
        return response

    def _get_json(self, url: str, **kwargs: Any) -> Tuple[Any, requests.Response]:
        response = self._get(url, **kwargs)
        try:
            return response.json(), response
        except ValueError as exc:
            log_api_error(f"API_DECODE_ERROR({self.source_id}): url={redact(url, self._secret)}")
            raise TransientUpstreamError(
                self.source_id, "undecodable JSON", quota_remaining=self.last_quota
            ) from exc

    def _quota_from(self, response: requests.Response) -> Optional[int]:
        return None


__all__ = [
    "UpstreamSource",
    "normalize_fields",
    "int_or_none",
    "float_or_none",
    "header_int",
    "external_id_or_none",
]
