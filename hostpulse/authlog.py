"""
Log tailing and failed-login counting for the auth log panel.
"""

import logging
import re
from collections import deque, namedtuple
from datetime import datetime, timedelta

logger = logging.getLogger(__name__)

DEFAULT_TAIL_LINES = 50

FAILURE_PATTERNS = (
    'authentication failure',
    'failed password',
    'connection closed by authenticating user',
    'invalid user',
    'disconnected from authenticating user',
)
FAILURE_RE = re.compile('|'.join(re.escape(p) for p in FAILURE_PATTERNS), re.IGNORECASE)

# "Jul 19 16:18:16" or an ISO 8601 prefix such as "2024-07-19T16:18:16.123456+02:00"
TIMESTAMP_RE = re.compile(
    r'^(?:(?P<syslog>[a-z]{3}\s+\d+\s+\d{2}:\d{2}:\d{2})'
    r'|(?P<iso>[0-9][0-9T:.\-]*(?:Z|[+-]\d{2}:?\d{2})?))',
    re.IGNORECASE,
)

LogTail = namedtuple('LogTail', ['lines', 'error'])


def unreadable_message(path):
    return f"Log file '{path}' is not readable. Check permissions."


def get_log_tail(path, max_lines=DEFAULT_TAIL_LINES):
    """Return the last ``max_lines`` non-empty lines of ``path``, oldest first.

    An unreadable file yields a single explanatory line and the same text in
    ``LogTail.error`` so callers can tell it apart from real log content.
    """
    tail = deque(maxlen=max_lines)
    try:
        with open(path, encoding='utf-8', errors='replace') as f:
            for line in f:
                line = line.rstrip('\r\n')
                if line:
                    tail.append(line)
    except OSError as e:
        logger.warning("Cannot read log file %s: %s", path, e)
        message = unreadable_message(path)
        return LogTail([message], message)
    return LogTail(list(tail), None)


def get_auth_log_tail(path, max_lines=DEFAULT_TAIL_LINES):
    return get_log_tail(path, max_lines).lines


def parse_log_timestamp(line, now=None):
    """Extract the leading timestamp of a log line as a naive local datetime.

    Returns None when the line has no timestamp we understand.
    """
    match = TIMESTAMP_RE.match(line)
    if not match:
        return None
    now = now or datetime.now()

    if match.group('syslog'):
        # Syslog timestamps carry no year
        stamp = ' '.join(match.group('syslog').split())
        try:
            parsed = datetime.strptime(f"{now.year} {stamp}", '%Y %b %d %H:%M:%S')
        except ValueError:
            return None
        if parsed > now + timedelta(days=1):
            try:
                parsed = parsed.replace(year=parsed.year - 1)
            except ValueError:
                return None
        return parsed

    stamp = match.group('iso')
    if stamp.endswith(('Z', 'z')):
        stamp = stamp[:-1] + '+00:00'
    try:
        parsed = datetime.fromisoformat(stamp)
    except ValueError:
        return None
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone().replace(tzinfo=None)
    return parsed


def count_failed_logins(lines, now=None):
    """Count failed login lines logged within the last hour.

    Lines without a parseable timestamp are skipped.
    """
    now = now or datetime.now()
    one_hour_ago = now - timedelta(hours=1)
    failed = 0
    for line in lines:
        logged_at = parse_log_timestamp(line, now)
        if logged_at is None:
            continue
        if logged_at >= one_hour_ago and FAILURE_RE.search(line):
            failed += 1
    return failed
