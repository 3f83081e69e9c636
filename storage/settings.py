"""Settings management for Router Monitor.

Settings live in a JSON file in the data directory. Missing or corrupt files
fall back to defaults. SMTP values may also come from the environment
(``SMTP_HOST``, ``SMTP_PORT``, ``SMTP_USER``, ``SMTP_PASS``,
``SMTP_FROM_EMAIL``), which wins over the file.
"""
import json
import os
import threading
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Dict, Optional

from config import INTERVALS, STORAGE, get_logger
from config.exceptions import ConfigurationError

logger = get_logger(__name__)


@dataclass
class SmtpSettings:
    """Outgoing mail server settings."""
    host: str = ""
    port: int = 587
    username: str = ""
    password: str = ""
    from_address: str = "noreply@router-monitor.local"
    use_tls: bool = True

    @property
    def configured(self) -> bool:
        return bool(self.host and self.port)

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> 'SmtpSettings':
        defaults = cls()
        return cls(
            host=data.get("host", defaults.host),
            port=int(data.get("port", defaults.port)),
            username=data.get("username", defaults.username),
            password=data.get("password", defaults.password),
            from_address=data.get("from_address", defaults.from_address),
            use_tls=bool(data.get("use_tls", defaults.use_tls)),
        )


@dataclass
class AppSettings:
    """Service settings."""
    poll_seconds: float = INTERVALS.POLL_SECONDS
    realtime_seconds: float = INTERVALS.REALTIME_SECONDS
    alert_check_seconds: float = INTERVALS.ALERT_CHECK_SECONDS
    flush_seconds: float = INTERVALS.FLUSH_SECONDS
    retention_days: int = STORAGE.RETENTION_DAYS
    pushgateway_url: str = ""
    metrics_port: int = 0            # 0 disables the scrape endpoint
    smtp: SmtpSettings = field(default_factory=SmtpSettings)
    user_emails: Dict[str, str] = field(default_factory=dict)  # user_id -> address

    def to_dict(self) -> dict:
        return {
            "poll_seconds": self.poll_seconds,
            "realtime_seconds": self.realtime_seconds,
            "alert_check_seconds": self.alert_check_seconds,
            "flush_seconds": self.flush_seconds,
            "retention_days": self.retention_days,
            "pushgateway_url": self.pushgateway_url,
            "metrics_port": self.metrics_port,
            "smtp": self.smtp.to_dict(),
            "user_emails": dict(self.user_emails),
        }

    @classmethod
    def from_dict(cls, data: dict) -> 'AppSettings':
        defaults = cls()
        settings = cls(
            poll_seconds=float(data.get("poll_seconds", defaults.poll_seconds)),
            realtime_seconds=float(data.get("realtime_seconds", defaults.realtime_seconds)),
            alert_check_seconds=float(data.get("alert_check_seconds", defaults.alert_check_seconds)),
            flush_seconds=float(data.get("flush_seconds", defaults.flush_seconds)),
            retention_days=int(data.get("retention_days", defaults.retention_days)),
            pushgateway_url=data.get("pushgateway_url", "") or "",
            metrics_port=int(data.get("metrics_port", 0) or 0),
            smtp=SmtpSettings.from_dict(data.get("smtp", {})),
            user_emails=dict(data.get("user_emails", {})),
        )
        settings.validate()
        return settings

    def validate(self) -> None:
        """Raise ConfigurationError on values the service cannot run with."""
        for name in ("poll_seconds", "realtime_seconds", "alert_check_seconds", "flush_seconds"):
            value = getattr(self, name)
            if value <= 0:
                raise ConfigurationError(f"{name} must be positive", {"value": value})
        if self.retention_days <= 0:
            raise ConfigurationError("retention_days must be positive",
                                     {"value": self.retention_days})


class SettingsManager:
    """Manages service settings."""

    def __init__(self, data_dir: Path, environ: Optional[Dict[str, str]] = None):
        self.data_dir = Path(data_dir)
        self.settings_file = self.data_dir / STORAGE.SETTINGS_FILE
        self._environ = os.environ if environ is None else environ
        self._lock = threading.Lock()
        self._settings: AppSettings = AppSettings()
        self._load()

    def _load(self) -> None:
        """Load settings from file."""
        if self.settings_file.exists():
            try:
                with open(self.settings_file, 'r') as f:
                    self._settings = AppSettings.from_dict(json.load(f))
            except (json.JSONDecodeError, IOError, ValueError, TypeError, ConfigurationError) as e:
                logger.warning(f"Could not load settings, using defaults: {e}")
                self._settings = AppSettings()
        else:
            self._settings = AppSettings()
        self._apply_environment()

    def _apply_environment(self) -> None:
        smtp = self._settings.smtp
        env = self._environ
        if env.get("SMTP_HOST"):
            smtp.host = env["SMTP_HOST"]
        if env.get("SMTP_PORT"):
            try:
                smtp.port = int(env["SMTP_PORT"])
            except ValueError:
                logger.warning(f"Ignoring invalid SMTP_PORT {env['SMTP_PORT']!r}")
        if env.get("SMTP_USER"):
            smtp.username = env["SMTP_USER"]
        if env.get("SMTP_PASS"):
            smtp.password = env["SMTP_PASS"]
        if env.get("SMTP_FROM_EMAIL"):
            smtp.from_address = env["SMTP_FROM_EMAIL"]

    def _save(self) -> None:
        """Save settings to file."""
        try:
            self.data_dir.mkdir(parents=True, exist_ok=True)
            with open(self.settings_file, 'w') as f:
                json.dump(self._settings.to_dict(), f, indent=2)
        except IOError as e:
            logger.error(f"Error saving settings: {e}")

    @property
    def settings(self) -> AppSettings:
        return self._settings

    # === Intervals ===

    def get_intervals(self) -> Dict[str, float]:
        s = self._settings
        return {
            "poll": s.poll_seconds,
            "realtime": s.realtime_seconds,
            "alert_check": s.alert_check_seconds,
            "flush": s.flush_seconds,
        }

    def set_interval(self, name: str, seconds: float) -> None:
        """Override one interval ("poll", "realtime", "alert_check" or "flush")."""
        attr = f"{name}_seconds"
        if not hasattr(self._settings, attr):
            raise ConfigurationError(f"Unknown interval {name!r}")
        if seconds <= 0:
            raise ConfigurationError(f"{attr} must be positive", {"value": seconds})
        with self._lock:
            setattr(self._settings, attr, float(seconds))
            self._save()

    # === Retention ===

    def get_retention_days(self) -> int:
        return self._settings.retention_days

    def set_retention_days(self, days: int) -> None:
        if days <= 0:
            raise ConfigurationError("retention_days must be positive", {"value": days})
        with self._lock:
            self._settings.retention_days = int(days)
            self._save()

    # === Mail ===

    def get_smtp(self) -> SmtpSettings:
        return self._settings.smtp

    def set_smtp(self, smtp: SmtpSettings) -> None:
        with self._lock:
            self._settings.smtp = smtp
            self._save()

    def get_user_email(self, user_id: str) -> Optional[str]:
        return self._settings.user_emails.get(user_id)

    def set_user_email(self, user_id: str, address: str) -> None:
        with self._lock:
            self._settings.user_emails[user_id] = address
            self._save()

    # === Metrics ===

    def get_pushgateway_url(self) -> str:
        return self._settings.pushgateway_url

    def set_pushgateway_url(self, url: str) -> None:
        with self._lock:
            self._settings.pushgateway_url = url
            self._save()

    def get_metrics_port(self) -> int:
        return self._settings.metrics_port


def get_settings_manager(data_dir: Optional[Path] = None) -> SettingsManager:
    """Create a settings manager for the given (or default) data directory."""
    if data_dir is None:
        data_dir = Path.home() / STORAGE.DATA_DIR_NAME
    return SettingsManager(data_dir)
