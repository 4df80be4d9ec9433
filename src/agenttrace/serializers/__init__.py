"""Serialization helpers."""

from .json import decode_batch, decode_event, encode_batch, event_to_wire

__all__ = ["decode_batch", "decode_event", "encode_batch", "event_to_wire"]
