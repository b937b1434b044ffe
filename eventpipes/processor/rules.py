"""Per event type dedup windows."""
from pathlib import Path
import structlog

log = structlog.get_logger()


def parse_dedup_rules(text: str) -> dict[str, int]:
    """
    Parse ``eventType=seconds`` pairs separated by commas or newlines.

    Blank entries and ``#`` comments are skipped.

    Raises:
        ValueError: If an entry has no ``=`` or a non-integer / negative ttl
    """
    rules: dict[str, int] = {}
    for raw in text.replace(",", "\n").splitlines():
        line = raw.strip()
        if not line or line.startswith("#"):
            continue
        event_type, sep, ttl = line.partition("=")
        if not sep or not event_type.strip():
            raise ValueError(f"invalid dedup rule: {line!r}")
        seconds = int(ttl.strip())
        if seconds <= 0:
            raise ValueError(f"dedup ttl must be positive: {line!r}")
        rules[event_type.strip()] = seconds
    return rules


def load_dedup_rules_file(path: str | Path) -> dict[str, int]:
    """Load dedup rules from a properties file (one ``eventType=seconds`` per line)."""
    rules = parse_dedup_rules(Path(path).read_text(encoding="utf-8"))
    log.info("dedup_rules.loaded", path=str(path), count=len(rules))
    return rules
