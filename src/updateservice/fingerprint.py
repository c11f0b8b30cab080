"""Content fingerprints for rendered configuration."""

from __future__ import annotations

import base64
import hashlib
from typing import Mapping

SEPARATOR = b":"


def fingerprint(data: Mapping[str, str]) -> str:
    """Return a SHA-256 hex digest of ``data``'s content.

    Keys are visited in sorted order, so the result does not depend on how the
    mapping was built. Keys and values are base64 encoded to limit the
    character set before ``:`` is used as a separator.
    """

    digest = hashlib.sha256()
    for key in sorted(data):
        for chunk in (key, data[key]):
            digest.update(base64.b64encode(chunk.encode("utf-8")))
            digest.update(SEPARATOR)
    return digest.hexdigest()
