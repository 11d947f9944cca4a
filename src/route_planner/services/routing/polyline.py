"""Decoder for the encoded polyline format used by ORS route geometry."""

from __future__ import annotations

PRECISION = 1e5


def _read_value(encoded: str, index: int) -> tuple[int, int]:
    shift = 0
    result = 0
    while True:
        if index >= len(encoded):
            raise ValueError("Truncated polyline: ran out of characters mid-value.")
        b = ord(encoded[index]) - 63
        index += 1
        result |= (b & 0x1F) << shift
        shift += 5
        if b < 0x20:
            break
    value = ~(result >> 1) if (result & 1) else (result >> 1)
    return value, index


def decode_polyline(encoded: str) -> list[list[float]]:
    """Decode an encoded polyline string to ``[longitude, latitude]`` pairs.

    Each point is stored as a latitude delta followed by a longitude delta,
    scaled by 1e5 and written as 5-bit groups with a continuation bit.

    Args:
        encoded: Encoded polyline string. An empty string yields an empty list.

    Returns:
        List of ``[longitude, latitude]`` pairs in input order.
    """
    coordinates: list[list[float]] = []
    index = 0
    lat = 0
    lon = 0

    while index < len(encoded):
        dlat, index = _read_value(encoded, index)
        lat += dlat
        dlon, index = _read_value(encoded, index)
        lon += dlon
        coordinates.append([lon / PRECISION, lat / PRECISION])

    return coordinates
