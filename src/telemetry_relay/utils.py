"""
Small helpers shared by producers and the CLI.
"""

import gzip
import json
import secrets
import time
from pathlib import Path
from typing import Any, Dict, Iterator, Union


def now_ms() -> int:
    """Milliseconds since the epoch."""
    return int(time.time() * 1000)


def new_session_id() -> str:
    return "session-" + secrets.token_hex(6)


def iter_ndjson(path: Union[str, Path]) -> Iterator[Dict[str, Any]]:
    """Yield one dict per non-blank line of an .ndjson or .ndjson.gz file."""
    p = Path(path)
    opener = gzip.open if p.suffix == ".gz" else open
    with opener(p, "rt", encoding="utf-8") as f:
        for line in f:
            line = line.strip()
            if line:
                yield json.loads(line)
