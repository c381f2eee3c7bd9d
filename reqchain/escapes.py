"""reqchain escapes - escape decoding and percent-encoding helpers."""

from urllib.parse import quote

# Characters left alone by path_escape. Unlike query escaping, '&', '=',
# '+' and '/' pass through untouched.
_PATH_SAFE = "!$&'()*+,;=:@/"

_ESCAPES = {"n": "\n", "r": "\r", "t": "\t"}


def process_escapes(value: str) -> str:
    r"""Decode backslash escapes in a declared variable value.

    \n, \r and \t become control characters; any other escaped character
    is kept literally (so \" -> " and \\ -> \). A trailing lone backslash
    is preserved.
    """
    out: list[str] = []
    i = 0
    while i < len(value):
        ch = value[i]
        if ch == "\\" and i + 1 < len(value):
            nxt = value[i + 1]
            out.append(_ESCAPES.get(nxt, nxt))
            i += 2
        else:
            out.append(ch)
            i += 1
    return "".join(out)


def url_encode(value: str) -> str:
    """RFC 3986 percent-encoding used by ``{{%name}}``.

    Everything except unreserved characters (A-Z a-z 0-9 - _ . ~) is
    encoded; non-ASCII text is encoded byte by byte as UTF-8.
    """
    return quote(value, safe="-_.~")


def path_escape(value: str) -> str:
    """Path-style escaping used when substituting ``{{:name}}`` into URLs.

    Space -> %20, '#' -> %23, '?' -> %3F, non-ASCII -> UTF-8 percent bytes.
    """
    return quote(value, safe=_PATH_SAFE)
