"""Deterministic display colors for routes without a declared color."""


def hash_string(value: str) -> int:
    """32-bit rolling string hash (``h * 31 + c`` over UTF-16 code units).

    Unlike ``hash()`` this is stable across interpreter runs.
    """
    data = value.encode("utf-16-le")
    h = 0
    for i in range(0, len(data), 2):
        unit = data[i] | (data[i + 1] << 8)
        h = ((h << 5) - h + unit) & 0xFFFFFFFF
    if h >= 0x80000000:
        h -= 0x100000000
    return abs(h)


def color_from_id(value) -> str:
    hue = hash_string(str(value)) % 360
    return f"hsl({hue}, 70%, 45%)"
