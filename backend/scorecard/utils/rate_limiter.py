"""
Call budget for the paid external services.
Transcription, schema extraction and commentary share one total budget per process.
"""
import logging
from typing import Dict, Optional, Tuple
from datetime import datetime, timedelta
from threading import Lock
from collections import defaultdict

from scorecard.config import Config

logger = logging.getLogger(__name__)

SERVICE_TRANSCRIPTION = 'transcription'
SERVICE_EXTRACTION = 'extraction'
SERVICE_COMMENTARY = 'commentary'

# Per-call timestamps are only kept for the hourly and daily stats
HISTORY_WINDOW = timedelta(hours=24)


class RateLimiter:
    """
    Shared call budget for external services.

    Callers ask can_make_call() before a paid call and record_call() after
    it (including failed calls). Refusals are counted per service so the
    API can report which stage ran out of budget.
    """

    def __init__(self, max_total_calls: Optional[int] = None, enabled: Optional[bool] = None):
        """
        Args:
            max_total_calls: Budget across all services (defaults to Config.MAX_TOTAL_CALLS)
            enabled: Whether the budget is enforced (defaults to Config.ENABLE_RATE_LIMITING)
        """
        self.max_total_calls = max_total_calls if max_total_calls is not None else Config.MAX_TOTAL_CALLS
        self.enabled = Config.ENABLE_RATE_LIMITING if enabled is None else enabled
        self.call_history: Dict[str, list] = defaultdict(list)  # service -> timestamps
        self.total_calls: Dict[str, int] = defaultdict(int)
        self.refused_calls: Dict[str, int] = defaultdict(int)
        self.lock = Lock()
        self.start_time = datetime.now()

    def _used(self) -> int:
        return sum(self.total_calls.values())

    def _prune(self, service: str, now: datetime) -> list:
        """Drop timestamps older than HISTORY_WINDOW; returns the kept history."""
        history = self.call_history[service]
        history[:] = [ts for ts in history if ts > now - HISTORY_WINDOW]
        return history

    def can_make_call(self, service: str) -> Tuple[bool, str]:
        """
        Check the remaining budget.

        Args:
            service: 'transcription', 'extraction' or 'commentary'

        Returns:
            Tuple of (allowed, reason)
        """
        if not self.enabled:
            return True, "OK"

        with self.lock:
            used = self._used()
            if used >= self.max_total_calls:
                self.refused_calls[service] += 1
                return False, (
                    f"Total call limit reached: {used}/{self.max_total_calls} "
                    f"calls across all services (refused {service})"
                )
            return True, "OK"

    def record_call(self, service: str):
        """Count one call against the budget."""
        with self.lock:
            now = datetime.now()
            self._prune(service, now)
            self.call_history[service].append(now)
            self.total_calls[service] += 1
            logger.info(f"Recorded {service} call. Budget used: {self._used()}/{self.max_total_calls}")

    def get_stats(self, service: Optional[str] = None) -> Dict:
        """
        Budget statistics, combined or for one service.

        Per-service history is bounded to HISTORY_WINDOW.
        """
        with self.lock:
            now = datetime.now()

            if service:
                history = self._prune(service, now)
                last_hour = now - timedelta(hours=1)
                return {
                    'service': service,
                    'total_calls': self.total_calls[service],
                    'refused_calls': self.refused_calls[service],
                    'calls_last_hour': sum(1 for ts in history if ts > last_hour),
                    'calls_last_day': len(history),
                }

            used = self._used()
            return {
                'total_calls': used,
                'max_calls': self.max_total_calls,
                'remaining_calls': max(0, self.max_total_calls - used),
                'calls_by_service': dict(self.total_calls),
                'refused_by_service': dict(self.refused_calls),
                'session_duration': (now - self.start_time).total_seconds()
            }

    def reset(self):
        """Forget all recorded and refused calls."""
        with self.lock:
            self.call_history.clear()
            self.total_calls.clear()
            self.refused_calls.clear()
            self.start_time = datetime.now()
            logger.info("Rate limiter reset")
