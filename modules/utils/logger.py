"""
Structured logging with conversation turn logging.
"""

import os
import logging
import logging.handlers
import time


def setup_logging(level="INFO", log_file=None, max_size_mb=10, backup_count=3):
    """Configure structured logging for the application."""
    # Compact console format
    console_format = "%(asctime)s  %(levelname)-5s  %(message)s"
    # Verbose format for log file
    file_format = "%(asctime)s [%(levelname)-7s] %(name)-25s | %(message)s"
    date_format = "%H:%M:%S"

    level_value = getattr(logging, str(level).upper(), logging.INFO)

    root_logger = logging.getLogger()
    root_logger.setLevel(level_value)

    # Remove existing handlers
    root_logger.handlers.clear()

    console = logging.StreamHandler()
    console.setLevel(level_value)
    console.setFormatter(logging.Formatter(console_format, datefmt=date_format))
    root_logger.addHandler(console)

    # File handler (rotating)
    if log_file:
        log_dir = os.path.dirname(log_file)
        if log_dir:
            os.makedirs(log_dir, exist_ok=True)
        file_handler = logging.handlers.RotatingFileHandler(
            log_file,
            maxBytes=max_size_mb * 1024 * 1024,
            backupCount=backup_count,
        )
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(logging.Formatter(file_format, datefmt=date_format))
        root_logger.addHandler(file_handler)

    # Third-party chatter
    logging.getLogger("urllib3").setLevel(logging.WARNING)
    logging.getLogger("gtts").setLevel(logging.WARNING)

    return root_logger


class ConversationLogger:
    """Logs completed and failed dialogue turns and keeps their history."""

    def __init__(self, max_history: int = 200):
        self.logger = logging.getLogger("conversation_events")
        self._history = []
        self._max_history = max_history
        self._total = 0
        self._failed = 0

    def log_turn(self, turn, **_):
        """Log a turn whose reply finished playing."""
        entry = {
            "timestamp": time.time(),
            "spoken": turn.spoken_text,
            "language": turn.detected_language,
            "reply": turn.reply,
            "duration_s": turn.duration,
            "success": True,
        }
        self._record(entry)
        self.logger.info(
            "Turn: %-30.30s | Lang: %-5s | Reply: %-40.40s | %s",
            turn.spoken_text,
            turn.detected_language or "?",
            turn.reply or "",
            f"{turn.duration:.1f}s" if turn.duration is not None else "N/A",
        )

    def log_failure(self, turn, error=None, **_):
        """Log a turn abandoned before playback."""
        self._record({
            "timestamp": time.time(),
            "spoken": turn.spoken_text,
            "language": turn.detected_language,
            "reply": None,
            "duration_s": None,
            "success": False,
        })
        self.logger.warning("Turn dropped: %r | Error: %s", turn.spoken_text, error)

    def get_history(self, last_n=None):
        """Get recent turn history."""
        if last_n:
            return self._history[-last_n:]
        return self._history.copy()

    def _record(self, entry: dict):
        self._total += 1
        if not entry["success"]:
            self._failed += 1
        self._history.append(entry)
        if len(self._history) > self._max_history:
            self._history = self._history[-self._max_history:]

    @property
    def total_turns(self):
        """Turns logged since start, including those trimmed from history."""
        return self._total

    @property
    def failed_turns(self):
        return self._failed
