"""Event protocol module."""

from .codec import belongs_to_run, decode_message, encode_message, message_to_dict

__all__ = ["encode_message", "decode_message", "message_to_dict", "belongs_to_run"]
