"""Conversion between the git-committed function dialect and the stored one.

Functions committed to git import the cloud SDK explicitly
(``import cloud from '@lafjs/cloud'``); the editor injects ``cloud`` itself, so
stored code carries no such import.
"""

from __future__ import annotations

import re

CLOUD_SDK_MODULE = "@lafjs/cloud"
CLOUD_SDK_IMPORT = f"import cloud from '{CLOUD_SDK_MODULE}'"

_CLOUD_IMPORT_RE = re.compile(r"import\s+cloud\s+from\s+['\"]@lafjs/cloud['\"]\s*;?\n?")


def to_internal_dialect(raw: str) -> str:
    """Strip every cloud SDK import statement, including the whitespace after it."""
    return _CLOUD_IMPORT_RE.sub("", raw)


def to_external_dialect(code: str) -> str:
    """Prepend the cloud SDK import unless the code already references the SDK."""
    if CLOUD_SDK_MODULE in code:
        return code
    return f"{CLOUD_SDK_IMPORT}\n\n{code}"
