"""Log-safe rendering of batch payloads.

Entity fields are caller data.  Before a batch (or the state it restores) is
written to a DEBUG line, fields whose name looks like a credential are masked,
long strings are clipped and long lists are cut short.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

# Matched as substrings of the lowercased field name with "_" and "-" removed,
# so "access_token", "X-Api-Key" and "user_password" all count.
_SENSITIVE_MARKERS = ("password", "secret", "token", "apikey", "authorization", "cookie")

_MASK = "<redacted>"


def _is_sensitive(field: object) -> bool:
    name = str(field).lower().replace("_", "").replace("-", "")
    return any(marker in name for marker in _SENSITIVE_MARKERS)


def redact_for_log(value: Any, *, max_string: int = 256, max_items: int = 20) -> Any:
    """Return a masked, size-bounded copy of *value* for debug logging.

    Mappings keep their keys, lists and tuples become lists of at most
    *max_items* entries followed by a ``"<+N more>"`` marker.
    """

    def render(item: Any) -> Any:
        if isinstance(item, str):
            return item if len(item) <= max_string else f"{item[:max_string]}…<truncated>"
        if item is None or isinstance(item, (bool, int, float)):
            return item
        if isinstance(item, Mapping):
            return {str(key): _MASK if _is_sensitive(key) else render(val) for key, val in item.items()}
        if isinstance(item, (list, tuple)):
            rendered = [render(entry) for entry in item[:max_items]]
            if len(item) > max_items:
                rendered.append(f"<+{len(item) - max_items} more>")
            return rendered
        return repr(item)

    return render(value)
