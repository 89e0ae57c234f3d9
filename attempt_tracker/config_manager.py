"""
Configuration manager for the attempt tracker: API endpoint, timeouts and
local session storage.
"""
import logging
import os
from pathlib import Path
from typing import Any, Dict
from urllib.parse import urlparse

from .models import ClientSettings


class ConfigManager:
    """Manages client configuration with validated setters."""

    # Default configuration values
    DEFAULT_API_BASE_URL = "http://localhost:5000/api"
    DEFAULT_REQUEST_TIMEOUT = 30
    DEFAULT_STORAGE_DIRECTORY = "./sessions/"
    DEFAULT_STORAGE_PREFIX = "test_session"
    DEFAULT_RESUME_GRACE_SECONDS = 10

    # Validation limits
    MIN_REQUEST_TIMEOUT = 5
    MAX_REQUEST_TIMEOUT = 120
    MIN_RESUME_GRACE_SECONDS = 0
    MAX_RESUME_GRACE_SECONDS = 300

    API_URL_ENV = "ATTEMPT_API_URL"

    def __init__(self):
        """Initialize ConfigManager with default settings."""
        self.logger = logging.getLogger(__name__)
        self._settings = ClientSettings()

    def get_settings(self) -> ClientSettings:
        """
        Get a copy of the current settings.

        Returns:
            ClientSettings object with current configuration
        """
        return ClientSettings(
            api_base_url=self._settings.api_base_url,
            request_timeout=self._settings.request_timeout,
            storage_directory=self._settings.storage_directory,
            storage_prefix=self._settings.storage_prefix,
            resume_grace_seconds=self._settings.resume_grace_seconds
        )

    def _failure(self, error_msg: str, user_message: str) -> Dict[str, Any]:
        self.logger.error(error_msg)
        return {
            'success': False,
            'error': error_msg,
            'user_message': user_message
        }

    def _success(self, message: str, user_message: str) -> Dict[str, Any]:
        self.logger.info(message)
        return {
            'success': True,
            'message': message,
            'user_message': user_message
        }

    def set_api_base_url(self, url: str) -> Dict[str, Any]:
        """
        Set the root URL of the platform API.

        Args:
            url: Absolute http(s) URL, e.g. ``https://school.example/api``

        Returns:
            Dictionary with success status, error message, and user-friendly message
        """
        if not isinstance(url, str):
            return self._failure(
                f"API URL must be a string, got {type(url).__name__}",
                f"❌ Invalid input: Expected a URL, got {type(url).__name__}"
            )

        parsed = urlparse(url.strip())
        if parsed.scheme not in ("http", "https") or not parsed.netloc:
            return self._failure(
                f"API URL must be an absolute http(s) URL: {url!r}",
                f"❌ Invalid API URL: {url}"
            )

        self._settings.api_base_url = url.strip().rstrip("/")
        return self._success(
            f"API URL set to {self._settings.api_base_url}",
            f"✅ API URL set to {self._settings.api_base_url}"
        )

    def get_api_base_url(self) -> str:
        return self._settings.api_base_url

    def set_request_timeout(self, seconds: int) -> Dict[str, Any]:
        """
        Set the per-request timeout.

        Args:
            seconds: Timeout in seconds

        Returns:
            Dictionary with success status, error message, and user-friendly message
        """
        if isinstance(seconds, bool) or not isinstance(seconds, int):
            return self._failure(
                f"Request timeout must be an integer, got {type(seconds).__name__}",
                f"❌ Invalid input: Expected a number, got {type(seconds).__name__}"
            )

        if seconds < self.MIN_REQUEST_TIMEOUT:
            return self._failure(
                f"Request timeout must be at least {self.MIN_REQUEST_TIMEOUT} seconds",
                f"❌ Timeout too short: Minimum is {self.MIN_REQUEST_TIMEOUT} seconds"
            )

        if seconds > self.MAX_REQUEST_TIMEOUT:
            return self._failure(
                f"Request timeout cannot exceed {self.MAX_REQUEST_TIMEOUT} seconds",
                f"❌ Timeout too long: Maximum is {self.MAX_REQUEST_TIMEOUT} seconds"
            )

        self._settings.request_timeout = seconds
        return self._success(
            f"Request timeout set to {seconds} seconds",
            f"✅ Request timeout set to {seconds} seconds"
        )

    def get_request_timeout(self) -> int:
        return self._settings.request_timeout

    def set_storage_directory(self, directory: str) -> Dict[str, Any]:
        """
        Set the directory holding local session records.

        Args:
            directory: Path to the session storage directory

        Returns:
            Dictionary with success status, error message, and user-friendly message
        """
        if not isinstance(directory, str):
            return self._failure(
                f"Storage directory must be a string, got {type(directory).__name__}",
                f"❌ Invalid input: Expected a path string, got {type(directory).__name__}"
            )

        if not directory.strip():
            return self._failure(
                "Storage directory cannot be empty",
                "❌ Directory path cannot be empty"
            )

        try:
            normalized_path = str(Path(directory).resolve())
        except (OSError, ValueError) as e:
            return self._failure(
                f"Invalid directory path format: {e}",
                f"❌ Invalid path format: {directory}"
            )

        # Check if path is reasonable (not system directories)
        system_dirs = ['/bin', '/usr', '/etc', '/sys', '/proc', 'C:\\Windows', 'C:\\Program Files']
        if any(normalized_path.startswith(sys_dir) for sys_dir in system_dirs):
            return self._failure(
                f"Cannot use system directory: {normalized_path}",
                f"❌ Cannot use system directory: {directory}"
            )

        self._settings.storage_directory = normalized_path
        return self._success(
            f"Storage directory set to {normalized_path}",
            f"✅ Session storage set to {normalized_path}"
        )

    def get_storage_directory(self) -> str:
        return self._settings.storage_directory

    def set_storage_prefix(self, prefix: str) -> Dict[str, Any]:
        """
        Set the namespace prefix of local session record keys.

        Returns:
            Dictionary with success status, error message, and user-friendly message
        """
        if not isinstance(prefix, str) or not prefix.strip() or any(ch.isspace() for ch in prefix.strip()):
            return self._failure(
                f"Storage prefix must be a non-empty word, got {prefix!r}",
                "❌ Storage prefix must be a single word"
            )

        self._settings.storage_prefix = prefix.strip()
        return self._success(
            f"Storage prefix set to {prefix.strip()}",
            f"✅ Storage prefix set to {prefix.strip()}"
        )

    def get_storage_prefix(self) -> str:
        return self._settings.storage_prefix

    def set_resume_grace_seconds(self, seconds: int) -> Dict[str, Any]:
        """
        Set how close to expiry a timed attempt may be and still be resumed.

        Attempts with this many seconds or fewer left are discarded on load
        instead of resumed.

        Returns:
            Dictionary with success status, error message, and user-friendly message
        """
        if isinstance(seconds, bool) or not isinstance(seconds, int):
            return self._failure(
                f"Resume grace must be an integer, got {type(seconds).__name__}",
                f"❌ Invalid input: Expected a number, got {type(seconds).__name__}"
            )

        if not self.MIN_RESUME_GRACE_SECONDS <= seconds <= self.MAX_RESUME_GRACE_SECONDS:
            return self._failure(
                f"Resume grace must be between {self.MIN_RESUME_GRACE_SECONDS} and "
                f"{self.MAX_RESUME_GRACE_SECONDS} seconds",
                f"❌ Resume grace must be between {self.MIN_RESUME_GRACE_SECONDS} and "
                f"{self.MAX_RESUME_GRACE_SECONDS} seconds"
            )

        self._settings.resume_grace_seconds = seconds
        return self._success(
            f"Resume grace set to {seconds} seconds",
            f"✅ Resume grace set to {seconds} seconds"
        )

    def get_resume_grace_seconds(self) -> int:
        return self._settings.resume_grace_seconds

    def apply_config(self, config: Dict[str, Any]) -> Dict[str, Any]:
        """
        Apply the ``api``, ``storage`` and ``attempts`` sections of config.json.

        Invalid values are reported and the defaults are kept for them.

        Returns:
            Dictionary with success status and the list of rejected settings
        """
        errors = []
        api_config = config.get('api', {}) or {}
        storage_config = config.get('storage', {}) or {}
        attempts_config = config.get('attempts', {}) or {}

        setters = [
            (api_config, 'base_url', self.set_api_base_url),
            (api_config, 'request_timeout', self.set_request_timeout),
            (storage_config, 'directory', self.set_storage_directory),
            (storage_config, 'prefix', self.set_storage_prefix),
            (attempts_config, 'resume_grace_seconds', self.set_resume_grace_seconds),
        ]
        for section, key, setter in setters:
            if key not in section:
                continue
            result = setter(section[key])
            if not result['success']:
                errors.append(f"{key}: {result['error']}")

        if errors:
            self.logger.warning(f"Configuration applied with {len(errors)} rejected settings")
        return {'success': not errors, 'errors': errors}

    def apply_environment(self) -> None:
        """Environment variables take precedence over config.json."""
        url = os.getenv(self.API_URL_ENV)
        if url:
            self.set_api_base_url(url)

    def reset_to_defaults(self) -> None:
        """Reset all settings to their default values."""
        self._settings = ClientSettings(
            api_base_url=self.DEFAULT_API_BASE_URL,
            request_timeout=self.DEFAULT_REQUEST_TIMEOUT,
            storage_directory=self.DEFAULT_STORAGE_DIRECTORY,
            storage_prefix=self.DEFAULT_STORAGE_PREFIX,
            resume_grace_seconds=self.DEFAULT_RESUME_GRACE_SECONDS
        )
        self.logger.info("Settings reset to defaults")

    def validate_settings(self) -> Dict[str, Any]:
        """
        Validate the current settings.

        Returns:
            Dictionary with a ``valid`` flag and a list of ``issues``
        """
        issues = []
        settings = self._settings

        parsed = urlparse(settings.api_base_url)
        if parsed.scheme not in ("http", "https") or not parsed.netloc:
            issues.append(f"Invalid API URL: {settings.api_base_url}")

        if not self.MIN_REQUEST_TIMEOUT <= settings.request_timeout <= self.MAX_REQUEST_TIMEOUT:
            issues.append(f"Request timeout out of range: {settings.request_timeout}")

        if not self.MIN_RESUME_GRACE_SECONDS <= settings.resume_grace_seconds <= self.MAX_RESUME_GRACE_SECONDS:
            issues.append(f"Resume grace out of range: {settings.resume_grace_seconds}")

        storage = Path(settings.storage_directory)
        if storage.exists() and not storage.is_dir():
            issues.append(f"Storage path is not a directory: {settings.storage_directory}")

        return {'valid': not issues, 'issues': issues}

    def get_settings_summary(self) -> str:
        """Human readable one-line summary of the current settings."""
        settings = self._settings
        return (
            f"API: {settings.api_base_url} | "
            f"Timeout: {settings.request_timeout} seconds | "
            f"Sessions: {settings.storage_directory} | "
            f"Resume grace: {settings.resume_grace_seconds} seconds"
        )
