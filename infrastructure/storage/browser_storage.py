"""
Session record kept in browser cookies so it survives page reloads.

Cookies can only be read from the incoming request and written by injected
JavaScript, which lands on the next rerun. Writes are therefore mirrored in
st.session_state so reads within the same browser session see them at once.
"""

import json
from typing import Dict, Iterable
from urllib.parse import unquote

import streamlit as st
import streamlit.components.v1 as components

COOKIE_MAX_AGE = 86400  # matches the 24h record lifetime
_MIRROR_KEY = "browser_record_mirror"
_DELETED = None


class BrowserCookieStorage:
    def _mirror(self) -> Dict[str, object]:
        if _MIRROR_KEY not in st.session_state:
            st.session_state[_MIRROR_KEY] = {}
        return st.session_state[_MIRROR_KEY]

    def _cookie(self, key):
        try:
            raw = st.context.cookies.get(key)
        except Exception:
            # st.context is unavailable outside a running app (bare imports, tests)
            raw = None
        return unquote(raw) if raw else None

    def read(self, keys: Iterable[str]) -> Dict[str, str]:
        mirror = self._mirror()
        result = {}
        for key in keys:
            if key in mirror:
                if mirror[key] is not _DELETED:
                    result[key] = mirror[key]
                continue
            value = self._cookie(key)
            if value is not None:
                result[key] = value
        return result

    def write(self, values: Dict[str, str]) -> None:
        values = {k: str(v) for k, v in values.items()}
        self._mirror().update(values)
        # One script sets every cookie of the pair.
        assignments = "\n".join(
            f'setCookie({json.dumps(k)}, {json.dumps(v)}, {COOKIE_MAX_AGE});' for k, v in values.items()
        )
        self._run_script(assignments)

    def remove(self, keys: Iterable[str]) -> None:
        keys = list(keys)
        mirror = self._mirror()
        for key in keys:
            mirror[key] = _DELETED
        self._run_script("\n".join(f'setCookie({json.dumps(k)}, "", 0);' for k in keys))

    def _run_script(self, body: str) -> None:
        components.html(
            f"""
            <script>
              function setCookie(name, value, maxAge) {{
                var cookieStr = name + "=" + encodeURIComponent(value) + "; path=/; max-age=" + maxAge + "; SameSite=Lax";
                document.cookie = cookieStr;
                try {{ window.parent.document.cookie = cookieStr; }} catch (e) {{}}
              }}
              {body}
            </script>
            """,
            height=0,
        )
