"""Structured logging infrastructure with verbosity levels and progress tracking."""

import copy
import logging
import logging.handlers
import time
from typing import Any, Dict, Optional

import colorlog

ROOT_LOGGER_NAME = 'wiki_confluence_migrator'


def setup_logging(
    verbosity: int = 0,
    log_file: Optional[str] = None,
    log_format: Optional[str] = None,
    date_format: Optional[str] = None,
    level: Optional[str] = None
) -> logging.Logger:
    """
    Set up structured logging with configurable verbosity levels.

    Args:
        verbosity: Verbosity level (0=WARNING, 1=INFO, 2+=DEBUG)
        log_file: Optional path to log file
        log_format: Optional custom log format string
        date_format: Optional custom date format string
        level: Optional explicit log level string (overrides verbosity)

    Returns:
        Configured logger instance
    """
    if level:
        allowed_levels = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        level_upper = level.upper()
        if level_upper not in allowed_levels:
            raise ValueError(
                f"Invalid log level '{level}'. Must be one of: {sorted(allowed_levels)}"
            )
        log_level = getattr(logging, level_upper)
    else:
        if verbosity >= 2:
            log_level = logging.DEBUG
        elif verbosity >= 1:
            log_level = logging.INFO
        else:
            log_level = logging.WARNING

    if log_format is None:
        log_format = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'

    if date_format is None:
        date_format = '%Y-%m-%d %H:%M:%S'

    # Root stays at WARNING so dependencies (urllib3, markdown) stay quiet
    logging.basicConfig(
        level=logging.WARNING,
        format=log_format,
        datefmt=date_format
    )

    logger = logging.getLogger(ROOT_LOGGER_NAME)
    logger.setLevel(log_level)
    logger.propagate = False
    logger.handlers.clear()

    console_handler = logging.StreamHandler()
    console_handler.setLevel(log_level)
    console_handler.setFormatter(colorlog.ColoredFormatter(
        fmt='%(log_color)s' + log_format,
        datefmt=date_format,
        log_colors={
            'DEBUG': 'cyan',
            'INFO': 'green',
            'WARNING': 'yellow',
            'ERROR': 'red',
            'CRITICAL': 'red,bg_white',
        }
    ))
    logger.addHandler(console_handler)

    if log_file:
        try:
            file_handler = logging.handlers.RotatingFileHandler(
                log_file,
                maxBytes=10 * 1024 * 1024,  # 10MB
                backupCount=5,
                encoding='utf-8'
            )
        except OSError as e:
            logger.warning(f"Failed to set up file logging: {str(e)}")
        else:
            file_handler.setLevel(log_level)
            file_handler.setFormatter(logging.Formatter(fmt=log_format, datefmt=date_format))
            logger.addHandler(file_handler)
            logger.info(f"Logging to file: {log_file}")
            logger.info(f"Log level: {logging.getLevelName(log_level)}")
    else:
        logger.info(f"Console logging only. Level: {logging.getLevelName(log_level)}")

    return logger


class ProgressTracker:
    """Context manager for tracking progress across operations."""

    def __init__(self, total_items: int, item_type: str = "items"):
        """
        Initialize progress tracker.

        Args:
            total_items: Total number of items to process
            item_type: Description of item type (e.g., "pages", "attachments")
        """
        self.total_items = total_items
        self.item_type = item_type
        self.processed_items = 0
        self.successful_items = 0
        self.failed_items = 0
        self.skipped_items = 0
        self.start_time: Optional[float] = None
        self.logger = logging.getLogger(ROOT_LOGGER_NAME)

    def __enter__(self) -> 'ProgressTracker':
        self.start_time = time.time()
        self.logger.info(f"Starting processing of {self.total_items} {self.item_type}")
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Log a summary; the level reflects how many items failed."""
        if self.start_time is None:
            return

        elapsed = time.time() - self.start_time
        success_rate = (self.successful_items / self.total_items * 100) if self.total_items > 0 else 0

        if self.failed_items > 0 and self.failed_items == self.total_items:
            log_method = self.logger.error
        elif self.failed_items > 0:
            log_method = self.logger.warning
        else:
            log_method = self.logger.info

        log_method(f"=== Progress Summary: {self.item_type.upper()} ===")
        log_method(f"Total: {self.total_items}")
        log_method(f"Processed: {self.processed_items}")
        log_method(f"Successful: {self.successful_items}")
        log_method(f"Failed: {self.failed_items}")
        if self.skipped_items:
            log_method(f"Skipped: {self.skipped_items}")
        log_method(f"Success Rate: {success_rate:.1f}%")
        log_method(f"Elapsed Time: {self._format_elapsed(elapsed)}")

    def increment(self, success: bool = True) -> None:
        """
        Increment progress counter.

        Args:
            success: Whether the item was processed successfully
        """
        self.processed_items += 1

        if success:
            self.successful_items += 1
        else:
            self.failed_items += 1

        if self.processed_items % 10 == 0 or not success:
            remaining = self.total_items - self.processed_items
            status = "Success" if success else "Failed"
            self.logger.info(
                f"Processed {self.processed_items}/{self.total_items} {self.item_type} "
                f"({remaining} remaining) - Last: {status}"
            )

    def skip(self, count: int = 1) -> None:
        """Count items that were not attempted (e.g. a skipped subtree)."""
        self.skipped_items += count

    def get_stats(self) -> Dict[str, Any]:
        """Get current progress statistics."""
        elapsed = 0.0 if self.start_time is None else time.time() - self.start_time

        return {
            'total': self.total_items,
            'processed': self.processed_items,
            'successful': self.successful_items,
            'failed': self.failed_items,
            'skipped': self.skipped_items,
            'success_rate': (self.successful_items / self.total_items * 100)
                            if self.total_items > 0 else 0,
            'elapsed_time': elapsed,
            'elapsed_time_formatted': self._format_elapsed(elapsed)
        }

    @staticmethod
    def _format_elapsed(seconds: float) -> str:
        """Format elapsed time in human-readable format."""
        if seconds < 60:
            return f"{seconds:.1f}s"

        minutes = int(seconds // 60)
        seconds = int(seconds % 60)

        if minutes < 60:
            return f"{minutes}m {seconds}s"

        hours = minutes // 60
        minutes = minutes % 60

        return f"{hours}h {minutes}m {seconds}s"


def log_section(title: str) -> None:
    """
    Log a decorative section header.

    Args:
        title: Section title to display
    """
    logger = logging.getLogger(ROOT_LOGGER_NAME)

    separator = "=" * 60
    logger.info("")
    logger.info(separator)
    logger.info(f"  {title.upper()}")
    logger.info(separator)
    logger.info("")


def log_config(config: Dict[str, Any]) -> None:
    """
    Log sanitized configuration for debugging.

    Args:
        config: Configuration dictionary to log
    """
    logger = logging.getLogger(ROOT_LOGGER_NAME)

    sanitized_config = sanitize_config(config)

    log_section("Configuration")

    confluence = sanitized_config.get('confluence', {})
    logger.info(f"Confluence Base URL: {confluence.get('base_url') or 'Not Set'}")
    logger.info(f"Context Path: {confluence.get('context_path', '/wiki')}")
    logger.info(f"Authentication Type: {confluence.get('auth_type', 'basic')}")
    if confluence.get('username'):
        logger.info(f"Username: {confluence.get('username')}")
    if confluence.get('password'):
        logger.info("Password: ***REDACTED***")
    logger.info("API Token: ***REDACTED***" if confluence.get('api_token') else "API Token: Not Set")
    logger.info(f"Space Key: {confluence.get('space_key') or 'Not Set'}")
    logger.info(f"Parent Page ID: {confluence.get('parent_page_id') or 'Not Set'}")

    logger.info("")

    wiki = sanitized_config.get('wiki', {})
    logger.info(f"Wiki Root: {wiki.get('root_dir') or 'Not Set'}")
    logger.info(f"Attachments: {wiki.get('attachments_dir') or 'Not Set'}")
    if wiki.get('exclude'):
        logger.info(f"Extra Exclusions: {', '.join(wiki.get('exclude'))}")
    logger.info(f"Project Name: {sanitized_config.get('project', {}).get('name') or 'Not Set'}")

    logger.info("")

    migration = sanitized_config.get('migration', {})
    logger.info(f"Validation State File: {migration.get('state_file', '.validation-state.json')}")
    logger.info(f"Name Fixes File: {migration.get('fixes_file', '.page-name-fixes.json')}")
    logger.info(f"Upload Workers: {migration.get('upload_workers', 3)}")
    logger.info(f"Prefer Blob URLs: {migration.get('prefer_blob_urls', False)}")
    logger.info(f"Ignore Owned Pages: {migration.get('ignore_owned_pages', True)}")
    if migration.get('report_path'):
        logger.info(f"Report Path: {migration.get('report_path')}")


def sanitize_config(config: Dict[str, Any]) -> Dict[str, Any]:
    """
    Create a sanitized copy of configuration with sensitive fields masked.

    Args:
        config: Configuration dictionary

    Returns:
        Sanitized configuration copy
    """
    sanitized = copy.deepcopy(config)

    sensitive_fields = {
        'password', 'secret', 'api_token', 'access_token', 'auth_header'
    }

    def mask_sensitive(data: Any) -> Any:
        if isinstance(data, dict):
            masked = {}
            for key, value in data.items():
                is_sensitive = any(sensitive in key.lower() for sensitive in sensitive_fields)
                if is_sensitive and isinstance(value, str) and value:
                    masked[key] = "***REDACTED***"
                else:
                    masked[key] = mask_sensitive(value)
            return masked
        elif isinstance(data, list):
            return [mask_sensitive(item) for item in data]
        else:
            return data

    return mask_sensitive(sanitized)


__all__ = [
    'setup_logging',
    'ProgressTracker',
    'log_section',
    'log_config',
    'sanitize_config'
]
