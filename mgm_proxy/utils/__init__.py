from typing import Iterable, List, Tuple

RawHeaders = List[Tuple[bytes, bytes]]


def copy_headers(
    raw_headers: Iterable[Tuple[bytes, bytes]], exclude: Iterable[str] = ()
) -> RawHeaders:
    """
    Copy a raw header list, keeping every value of every key in order.

    Names in ``exclude`` are dropped case-insensitively. Used for both the
    inbound request and the upstream response.
    """
    skip = {name.lower().encode("latin-1") for name in exclude}
    return [(key, value) for key, value in raw_headers if key.lower() not in skip]
